"""High-availability provider selection backed by per-provider circuit breakers."""

import logging
from typing import List, Optional

from dialogue_engine.domain.exceptions import NotFoundError
from dialogue_engine.domain.model.llm import LLMModel, Provider, ProviderSelection
from dialogue_engine.domain.ports.provider_selector_port import ProviderSelectorPort
from dialogue_engine.domain.ports.repositories import LLMCatalogRepository
from dialogue_engine.infrastructure.llm.resilience import CircuitBreakerRegistry

logger = logging.getLogger(__name__)


class CircuitBreakerProviderSelector(ProviderSelectorPort):
    """
    Chooses the provider/model pair to call for a turn.

    The model's declared provider is used while its circuit admits calls.
    Otherwise the caller's fallback chain (ordered model ids) is walked and
    the first active model with an active, admitted provider wins. If no
    candidate is healthy the declared pair is returned unchanged. The
    outcome only depends on the inputs and the breaker states.

    Selection only inspects breaker state. A half-open trial slot is claimed
    by acquire() when the model call starts, and handed back by release()
    if the call ends with neither a success nor a failure.
    """

    def __init__(self, catalog: LLMCatalogRepository, breakers: CircuitBreakerRegistry) -> None:
        self._catalog = catalog
        self._breakers = breakers

    async def select(
        self,
        model: LLMModel,
        user_id: str,
        session_id: str,
        fallback_chain: List[str],
    ) -> ProviderSelection:
        declared = await self._catalog.find_provider(model.provider_id)
        if declared is None:
            raise NotFoundError("Provider", model.provider_id)

        if self._admits(declared):
            return ProviderSelection(provider=declared, model=model, instance_id=declared.id)

        for fallback_model_id in fallback_chain:
            if fallback_model_id == model.id:
                continue
            candidate = await self._catalog.find_model(fallback_model_id)
            if candidate is None or not candidate.is_active:
                continue
            provider = await self._catalog.find_provider(candidate.provider_id)
            if provider is None or not self._admits(provider):
                continue
            logger.warning(
                f"[Failover] Session {session_id}: provider {declared.name} unavailable, "
                f"using {provider.name}/{candidate.model_name}"
            )
            return ProviderSelection(
                provider=provider, model=candidate, instance_id=provider.id, is_fallback=True
            )

        logger.warning(
            f"[Failover] Session {session_id}: no healthy fallback for user {user_id}, "
            f"keeping {declared.name}"
        )
        return ProviderSelection(provider=declared, model=model, instance_id=declared.id)

    def acquire(self, selection: ProviderSelection) -> bool:
        return self._breakers.get_breaker(selection.provider.id).can_execute()

    def release(self, selection: ProviderSelection) -> None:
        self._breakers.get_breaker(selection.provider.id).release()

    def record_success(self, selection: ProviderSelection) -> None:
        self._breakers.get_breaker(selection.provider.id).record_success()

    def record_failure(
        self, selection: ProviderSelection, error: Optional[BaseException] = None
    ) -> None:
        self._breakers.get_breaker(selection.provider.id).record_failure(error)

    def _admits(self, provider: Provider) -> bool:
        return provider.is_active and self._breakers.get_breaker(provider.id).is_available()
