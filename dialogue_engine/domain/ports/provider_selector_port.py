"""High-availability provider selection port."""

from typing import List, Optional, Protocol, runtime_checkable

from dialogue_engine.domain.model.llm import LLMModel, ProviderSelection


@runtime_checkable
class ProviderSelectorPort(Protocol):
    """
    Chooses the provider/model pair actually called for a turn.

    May return a different pair than the model's declared provider when the
    declared one is unavailable and the caller's fallback chain offers one.
    """

    async def select(
        self,
        model: LLMModel,
        user_id: str,
        session_id: str,
        fallback_chain: List[str],
    ) -> ProviderSelection:
        ...

    def acquire(self, selection: ProviderSelection) -> bool:
        """Claim a call slot right before the model is invoked."""
        ...

    def release(self, selection: ProviderSelection) -> None:
        """Give back a claimed slot when the call ended without an outcome."""
        ...

    def record_success(self, selection: ProviderSelection) -> None:
        ...

    def record_failure(
        self, selection: ProviderSelection, error: Optional[BaseException] = None
    ) -> None:
        ...
