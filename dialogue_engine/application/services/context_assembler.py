"""
Context Assembler - builds the TurnContext of one request.

Resolution order:
1. caller's session -> agent (installed snapshot for non-owners, for the
   session agent and for explicitly named targets alike)
2. tool identifiers -> remote tool servers
3. model: explicit id > workspace binding > user default
4. provider with failover
5. history: active messages filtered by the token budget, plus a transient
   attachment message for the current turn's files
"""

import functools
import logging
from typing import List, Optional

from dialogue_engine.application.services.token_budget_manager import (
    TokenBudgetManager,
    order_messages,
)
from dialogue_engine.domain.exceptions import DisabledError, NotFoundError
from dialogue_engine.domain.model.agent import Agent
from dialogue_engine.domain.model.conversation import (
    ConversationContext,
    Message,
    MessageRole,
    Session,
)
from dialogue_engine.domain.model.llm import (
    LLMModel,
    Provider,
    ProviderSelection,
    TokenBudgetConfig,
    UserSettings,
)
from dialogue_engine.domain.model.turn import ChatRequest, TurnContext, TurnKind
from dialogue_engine.domain.ports.provider_selector_port import ProviderSelectorPort
from dialogue_engine.domain.ports.repositories import (
    AgentRepository,
    LLMCatalogRepository,
    MessageRepository,
    SessionRepository,
    UserSettingsRepository,
    WorkspaceRepository,
)
from dialogue_engine.domain.ports.summarizer_port import SummarizerPort
from dialogue_engine.domain.ports.tool_gateway_port import ToolGatewayPort

logger = logging.getLogger(__name__)


class ContextAssembler:
    """Resolves everything a turn needs before any streaming starts."""

    def __init__(
        self,
        session_repository: SessionRepository,
        agent_repository: AgentRepository,
        llm_catalog: LLMCatalogRepository,
        workspace_repository: WorkspaceRepository,
        user_settings_repository: UserSettingsRepository,
        message_repository: MessageRepository,
        tool_gateway: ToolGatewayPort,
        provider_selector: ProviderSelectorPort,
        token_budget_manager: TokenBudgetManager,
        summarizer: Optional[SummarizerPort] = None,
        default_budget: Optional[TokenBudgetConfig] = None,
    ) -> None:
        self._sessions = session_repository
        self._agents = agent_repository
        self._catalog = llm_catalog
        self._workspaces = workspace_repository
        self._user_settings = user_settings_repository
        self._messages = message_repository
        self._tool_gateway = tool_gateway
        self._selector = provider_selector
        self._budget_manager = token_budget_manager
        self._summarizer = summarizer
        self._default_budget = default_budget or TokenBudgetConfig()

    async def assemble(
        self, request: ChatRequest, user_id: str, streaming: bool = True
    ) -> TurnContext:
        """Build the context of a top-level turn on the session's own agent."""
        session = await self.load_session(request.session_id, user_id)
        agent = await self._resolve_agent(session.agent_id, user_id)
        return await self._build(
            request,
            user_id,
            agent,
            streaming=streaming,
            suppress_persistence=False,
            delegation_depth=0,
        )

    async def assemble_for_agent(
        self,
        request: ChatRequest,
        user_id: str,
        target_agent_id: str,
        suppress_persistence: bool = True,
        delegation_depth: int = 1,
    ) -> TurnContext:
        """Build a single-shot context for an explicitly named agent in the same session."""
        await self.load_session(request.session_id, user_id)
        agent = await self._resolve_agent(target_agent_id, user_id)
        if not agent.enabled:
            raise DisabledError("Agent", target_agent_id)
        return await self._build(
            request,
            user_id,
            agent,
            streaming=False,
            suppress_persistence=suppress_persistence,
            delegation_depth=delegation_depth,
        )

    async def _build(
        self,
        request: ChatRequest,
        user_id: str,
        agent: Agent,
        streaming: bool,
        suppress_persistence: bool,
        delegation_depth: int,
    ) -> TurnContext:
        tool_ids = await self._tool_gateway.resolve_servers(agent.tool_ids, user_id)

        user_settings = await self._user_settings.find_by_user(user_id)
        workspace = await self._workspaces.find_model_config(agent.id, user_id)
        model = await self._resolve_model(
            request.model_id, workspace.model_id if workspace else None, user_settings
        )
        provider = await self._load_provider(model)
        fallback_chain = list(user_settings.fallback_model_ids) if user_settings else []
        selection = await self._selector.select(model, user_id, request.session_id, fallback_chain)

        budget = workspace.budget if workspace else self._default_budget
        context = await self._messages.get_context(request.session_id)
        if context is None:
            context = ConversationContext(session_id=request.session_id)
        history = await self._hydrate_history(
            context, budget, selection, persist_changes=not suppress_persistence
        )
        if request.file_urls:
            # transient: shows the model this turn's attachments, never persisted
            history.append(
                Message(
                    session_id=request.session_id,
                    role=MessageRole.USER,
                    file_urls=list(request.file_urls),
                )
            )

        kind = TurnKind.AGENT if tool_ids or agent.linked_agent_ids else TurnKind.STANDARD
        logger.info(
            f"[Assembler] Session {request.session_id}: agent={agent.display_name} "
            f"model={selection.qualified_model_name} fallback={selection.is_fallback} "
            f"kind={kind.value} history={len(history)} depth={delegation_depth}"
        )
        return TurnContext(
            session_id=request.session_id,
            user_id=user_id,
            message=request.message,
            file_urls=list(request.file_urls),
            agent=agent,
            model=model,
            provider=provider,
            selection=selection,
            tool_ids=tool_ids,
            history=history,
            conversation_context=context,
            budget=budget,
            kind=kind,
            streaming=streaming,
            suppress_persistence=suppress_persistence,
            delegation_depth=delegation_depth,
        )

    async def load_session(self, session_id: str, user_id: str) -> Session:
        """The caller's session; sessions of other users are reported as missing."""
        session = await self._sessions.find_by_id(session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError("Session", session_id)
        return session

    async def _resolve_agent(self, agent_id: str, user_id: str) -> Agent:
        """Live agent for its owner, latest published version for everyone else."""
        agent = await self._agents.find_by_id(agent_id)
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        if agent.is_owned_by(user_id):
            return agent
        if not agent.enabled:
            raise DisabledError("Agent", agent.id)
        version = await self._agents.find_latest_version(agent.id)
        if version is None:
            raise NotFoundError("AgentVersion", agent.id)
        return version.apply_to(agent)

    async def _resolve_model(
        self,
        requested_model_id: Optional[str],
        workspace_model_id: Optional[str],
        user_settings: Optional[UserSettings],
    ) -> LLMModel:
        model_id = (
            requested_model_id
            or workspace_model_id
            or (user_settings.default_model_id if user_settings else None)
        )
        if not model_id:
            raise NotFoundError("Model", None)
        model = await self._catalog.find_model(model_id)
        if model is None:
            raise NotFoundError("Model", model_id)
        if not model.is_active:
            raise DisabledError("Model", model_id)
        return model

    async def _load_provider(self, model: LLMModel) -> Provider:
        provider = await self._catalog.find_provider(model.provider_id)
        if provider is None:
            raise NotFoundError("Provider", model.provider_id)
        if not provider.is_active:
            raise DisabledError("Provider", provider.id)
        return provider

    async def _hydrate_history(
        self,
        context: ConversationContext,
        budget: TokenBudgetConfig,
        selection: ProviderSelection,
        persist_changes: bool,
    ) -> List[Message]:
        messages = await self._messages.load_by_ids(context.active_message_ids)
        summarize = None
        if self._summarizer is not None:
            summarize = functools.partial(self._summarize, selection=selection)
        result = await self._budget_manager.apply(messages, budget, summarize=summarize)
        if result.was_compressed:
            logger.info(
                f"[Assembler] Session {context.session_id} history compressed: "
                f"{result.to_event_data()}"
            )

        retained_ids = [m.id for m in result.retained]
        if result.summary is not None:
            context.rewrite([result.summary.id, *retained_ids], result.summary.content)
            if persist_changes:
                await self._messages.save_summary(result.summary, context)
        elif retained_ids != context.active_message_ids and result.was_compressed:
            context.rewrite(retained_ids, context.summary if self._has_summary(result.retained) else None)
            if persist_changes:
                await self._messages.save_context(context)

        # the rolling summary reaches the prompt through context.summary
        return [m for m in order_messages(result.retained) if not m.is_summary()]

    async def _summarize(
        self, messages: List[Message], previous: Optional[str], selection: ProviderSelection
    ) -> str:
        return await self._summarizer.summarize(messages, selection, previous_summary=previous)

    @staticmethod
    def _has_summary(messages: List[Message]) -> bool:
        return any(m.is_summary() for m in messages)
