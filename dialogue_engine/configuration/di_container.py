"""Dependency Injection Container.

Builds each collaborator once and hands out the same instance afterwards.
Sub-agent tools call back into the ConversationService through a late-bound
callback, so the tool layer never imports the service that runs it.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dialogue_engine.application.services.context_assembler import ContextAssembler
from dialogue_engine.application.services.conversation_service import ConversationService
from dialogue_engine.application.services.prompt_builder import PromptBuilder
from dialogue_engine.application.services.stream_session_registry import StreamSessionRegistry
from dialogue_engine.application.services.streaming_orchestrator import StreamingOrchestrator
from dialogue_engine.application.services.token_budget_manager import TokenBudgetManager
from dialogue_engine.configuration.config import Settings, get_settings
from dialogue_engine.domain.model.turn import ChatRequest
from dialogue_engine.domain.ports.llm_invoker_port import LLMInvokerPort
from dialogue_engine.domain.ports.repositories import (
    AgentRepository,
    LLMCatalogRepository,
    MessageRepository,
    SessionRepository,
    UserSettingsRepository,
    WorkspaceRepository,
)
from dialogue_engine.domain.ports.tool_gateway_port import ToolGatewayPort
from dialogue_engine.infrastructure.adapters.secondary.persistence import (
    InMemoryAgentRepository,
    InMemoryLLMCatalogRepository,
    InMemorySessionRepository,
    InMemoryUserSettingsRepository,
    InMemoryWorkspaceRepository,
    SqlMessageRepository,
    create_engine,
    create_session_factory,
)
from dialogue_engine.infrastructure.agent.tools import (
    McpToolServerGateway,
    SubAgentToolFactory,
    ToolProvisioner,
)
from dialogue_engine.infrastructure.llm.litellm_invoker import LiteLLMInvoker
from dialogue_engine.infrastructure.llm.provider_selector import CircuitBreakerProviderSelector
from dialogue_engine.infrastructure.llm.resilience import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from dialogue_engine.infrastructure.llm.summarizer import LLMSummarizer
from dialogue_engine.infrastructure.transport import SingleShotTransport, StreamingTransport

logger = logging.getLogger(__name__)


class DIContainer:
    """Dependency Injection Container for the dialogue engine.

    Every collaborator can be overridden through the constructor; anything
    not given is built from ``settings`` on first use.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        message_repository: Optional[MessageRepository] = None,
        session_repository: Optional[SessionRepository] = None,
        agent_repository: Optional[AgentRepository] = None,
        llm_catalog: Optional[LLMCatalogRepository] = None,
        workspace_repository: Optional[WorkspaceRepository] = None,
        user_settings_repository: Optional[UserSettingsRepository] = None,
        llm_invoker: Optional[LLMInvokerPort] = None,
        tool_gateway: Optional[ToolGatewayPort] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._engine = engine
        self._session_factory = session_factory
        self._message_repository = message_repository
        self._session_repository = session_repository
        self._agent_repository = agent_repository
        self._llm_catalog = llm_catalog
        self._workspace_repository = workspace_repository
        self._user_settings_repository = user_settings_repository
        self._llm_invoker = llm_invoker
        self._tool_gateway = tool_gateway

        self._registry: Optional[StreamSessionRegistry] = None
        self._breakers: Optional[CircuitBreakerRegistry] = None
        self._provider_selector: Optional[CircuitBreakerProviderSelector] = None
        self._assembler: Optional[ContextAssembler] = None
        self._orchestrator: Optional[StreamingOrchestrator] = None
        self._conversation_service: Optional[ConversationService] = None

    @property
    def settings(self) -> Settings:
        return self._settings

    # === Persistence ===

    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_engine(self._settings)
        return self._engine

    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = create_session_factory(self.engine())
        return self._session_factory

    def message_repository(self) -> MessageRepository:
        if self._message_repository is None:
            self._message_repository = SqlMessageRepository(self.session_factory())
        return self._message_repository

    def session_repository(self) -> SessionRepository:
        if self._session_repository is None:
            self._session_repository = InMemorySessionRepository()
        return self._session_repository

    def agent_repository(self) -> AgentRepository:
        if self._agent_repository is None:
            self._agent_repository = InMemoryAgentRepository()
        return self._agent_repository

    def llm_catalog(self) -> LLMCatalogRepository:
        if self._llm_catalog is None:
            self._llm_catalog = InMemoryLLMCatalogRepository()
        return self._llm_catalog

    def workspace_repository(self) -> WorkspaceRepository:
        if self._workspace_repository is None:
            self._workspace_repository = InMemoryWorkspaceRepository()
        return self._workspace_repository

    def user_settings_repository(self) -> UserSettingsRepository:
        if self._user_settings_repository is None:
            self._user_settings_repository = InMemoryUserSettingsRepository()
        return self._user_settings_repository

    # === LLM ===

    def llm_invoker(self) -> LLMInvokerPort:
        if self._llm_invoker is None:
            self._llm_invoker = LiteLLMInvoker(timeout=self._settings.llm_timeout)
        return self._llm_invoker

    def circuit_breakers(self) -> CircuitBreakerRegistry:
        if self._breakers is None:
            self._breakers = CircuitBreakerRegistry(
                CircuitBreakerConfig(
                    failure_threshold=self._settings.circuit_breaker_failure_threshold,
                    recovery_timeout=float(self._settings.circuit_breaker_recovery_seconds),
                )
            )
        return self._breakers

    def provider_selector(self) -> CircuitBreakerProviderSelector:
        if self._provider_selector is None:
            self._provider_selector = CircuitBreakerProviderSelector(
                self.llm_catalog(), self.circuit_breakers()
            )
        return self._provider_selector

    def summarizer(self) -> LLMSummarizer:
        return LLMSummarizer(self.llm_invoker(), max_tokens=self._settings.summary_max_tokens)

    # === Tools ===

    def tool_gateway(self) -> ToolGatewayPort:
        if self._tool_gateway is None:
            self._tool_gateway = McpToolServerGateway(
                base_url=self._settings.mcp_server_base_url,
                timeout=self._settings.mcp_timeout,
            )
        return self._tool_gateway

    def stream_session_registry(self) -> StreamSessionRegistry:
        if self._registry is None:
            self._registry = StreamSessionRegistry()
        return self._registry

    def subagent_tool_factory(self) -> SubAgentToolFactory:
        return SubAgentToolFactory(
            agent_repository=self.agent_repository(),
            message_repository=self.message_repository(),
            registry=self.stream_session_registry(),
            execute_callback=self._delegate,
        )

    def tool_provisioner(self) -> ToolProvisioner:
        return ToolProvisioner(
            self.tool_gateway(),
            self.subagent_tool_factory(),
            max_delegation_depth=self._settings.max_delegation_depth,
        )

    async def _delegate(
        self, request: ChatRequest, user_id: str, target_agent_id: str, delegation_depth: int
    ) -> str:
        return await self.conversation_service().delegate(
            request, user_id, target_agent_id, delegation_depth
        )

    # === Application services ===

    def context_assembler(self) -> ContextAssembler:
        if self._assembler is None:
            self._assembler = ContextAssembler(
                session_repository=self.session_repository(),
                agent_repository=self.agent_repository(),
                llm_catalog=self.llm_catalog(),
                workspace_repository=self.workspace_repository(),
                user_settings_repository=self.user_settings_repository(),
                message_repository=self.message_repository(),
                tool_gateway=self.tool_gateway(),
                provider_selector=self.provider_selector(),
                token_budget_manager=TokenBudgetManager(),
                summarizer=self.summarizer(),
                default_budget=self._settings.default_token_budget,
            )
        return self._assembler

    def streaming_orchestrator(self) -> StreamingOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = StreamingOrchestrator(
                llm_invoker=self.llm_invoker(),
                message_repository=self.message_repository(),
                tool_provisioner=self.tool_provisioner(),
                registry=self.stream_session_registry(),
                prompt_builder=PromptBuilder(summary_prefix=self._settings.summary_prefix),
                provider_selector=self.provider_selector(),
                max_tool_rounds=self._settings.max_tool_rounds,
                temperature=self._settings.llm_temperature,
                tool_result_preview_chars=self._settings.tool_result_preview_chars,
            )
        return self._orchestrator

    def conversation_service(self) -> ConversationService:
        if self._conversation_service is None:
            self._conversation_service = ConversationService(
                assembler=self.context_assembler(),
                orchestrator=self.streaming_orchestrator(),
                registry=self.stream_session_registry(),
                message_repository=self.message_repository(),
                streaming_transport=StreamingTransport(
                    consumer_grace=self._settings.stream_consumer_grace
                ),
                single_shot_transport=SingleShotTransport(),
                connection_timeout=self._settings.stream_connection_timeout,
            )
        return self._conversation_service

    async def shutdown(self) -> None:
        if self._conversation_service is not None:
            await self._conversation_service.shutdown()
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("[DIContainer] Database engine disposed")
