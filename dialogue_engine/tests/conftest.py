"""Pytest configuration and shared fixtures for testing."""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dialogue_engine.application.services.context_assembler import ContextAssembler
from dialogue_engine.application.services.stream_session_registry import StreamSessionRegistry
from dialogue_engine.application.services.streaming_orchestrator import StreamingOrchestrator
from dialogue_engine.application.services.token_budget_manager import TokenBudgetManager
from dialogue_engine.domain.model.agent import Agent
from dialogue_engine.domain.model.conversation import (
    ConversationContext,
    Message,
    MessageRole,
    Session,
)
from dialogue_engine.domain.model.llm import LLMModel, Provider, UserSettings
from dialogue_engine.domain.model.stream import ChatEvent, ChatEventType
from dialogue_engine.domain.ports.llm_invoker_port import (
    LLMInvocationRequest,
    LLMInvocationResult,
    StreamChunk,
)
from dialogue_engine.domain.ports.repositories import MessageRepository
from dialogue_engine.domain.ports.tool_gateway_port import ToolGatewayPort
from dialogue_engine.domain.ports.transport_port import MessageTransport, OutputConnection
from dialogue_engine.infrastructure.adapters.secondary.persistence import (
    InMemoryAgentRepository,
    InMemoryLLMCatalogRepository,
    InMemorySessionRepository,
    InMemoryUserSettingsRepository,
    InMemoryWorkspaceRepository,
    SqlMessageRepository,
)
from dialogue_engine.infrastructure.adapters.secondary.persistence.models import Base
from dialogue_engine.infrastructure.agent.tools import (
    AgentTool,
    SubAgentToolFactory,
    ToolProvisioner,
)
from dialogue_engine.infrastructure.llm.provider_selector import CircuitBreakerProviderSelector
from dialogue_engine.infrastructure.llm.resilience import CircuitBreakerRegistry

# Constants
TEST_USER_ID = "550e8400-e29b-41d4-a716-446655440000"
OTHER_USER_ID = "550e8400-e29b-41d4-a716-446655440009"
TEST_SESSION_ID = "session-1"
TEST_AGENT_ID = "agent-main"
TEST_PROVIDER_ID = "provider-main"
TEST_MODEL_ID = "model-main"

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_message(
    body_tokens: int,
    index: int,
    role: MessageRole = MessageRole.USER,
    content: Optional[str] = None,
    session_id: str = TEST_SESSION_ID,
) -> Message:
    """Message whose creation time follows ``index``."""
    return Message(
        id=f"msg-{index:03d}",
        session_id=session_id,
        role=role,
        content=content if content is not None else f"message {index}",
        token_count=body_tokens,
        body_token_count=body_tokens,
        created_at=BASE_TIME + timedelta(seconds=index),
    )


# --- Fakes ---


class FakeMessageRepository(MessageRepository):
    """List-backed message store recording the order of writes."""

    def __init__(self) -> None:
        self.messages: Dict[str, Message] = {}
        self.write_order: List[str] = []
        self.contexts: Dict[str, ConversationContext] = {}
        self.updated: List[str] = []
        self.fail_on_save: Optional[Exception] = None
        self.saves_before_failure = 0
        self.fail_on_update: Optional[Exception] = None

    async def save_and_activate(self, messages: List[Message], context: ConversationContext) -> None:
        if self.fail_on_save is not None:
            if self.saves_before_failure <= 0:
                raise self.fail_on_save
            self.saves_before_failure -= 1
        for message in messages:
            self.messages[message.id] = message
            self.write_order.append(message.id)
        context.activate(m.id for m in messages)
        self.contexts[context.session_id] = context

    async def update_message(self, message: Message) -> None:
        if self.fail_on_update is not None:
            raise self.fail_on_update
        self.messages[message.id] = message
        self.updated.append(message.id)

    async def load_by_ids(self, message_ids: List[str]) -> List[Message]:
        return [self.messages[i] for i in message_ids if i in self.messages]

    async def get_context(self, session_id: str) -> Optional[ConversationContext]:
        context = self.contexts.get(session_id)
        return copy.deepcopy(context) if context else None

    async def save_context(self, context: ConversationContext) -> None:
        self.contexts[context.session_id] = context

    async def save_summary(self, summary: Message, context: ConversationContext) -> None:
        self.messages[summary.id] = summary
        self.write_order.append(summary.id)
        self.contexts[context.session_id] = context

    def seed(self, session_id: str, messages: Sequence[Message]) -> ConversationContext:
        context = ConversationContext(session_id=session_id)
        for message in messages:
            self.messages[message.id] = message
        context.activate(m.id for m in messages)
        self.contexts[session_id] = context
        return context

    def written(self) -> List[Message]:
        return [self.messages[i] for i in self.write_order]


Round = List[Union[StreamChunk, Exception]]


class ScriptedLLMInvoker:
    """Plays back one scripted round per ``invoke_stream`` call."""

    def __init__(self, rounds: Optional[List[Round]] = None, summary: str = "summary text") -> None:
        self.rounds = list(rounds or [])
        self.requests: List[LLMInvocationRequest] = []
        self.summary = summary
        self.invoke_requests: List[LLMInvocationRequest] = []
        self.chunk_delay: float = 0.0
        self.before_chunk: Optional[Callable[[int, StreamChunk], Any]] = None

    async def invoke_stream(self, request: LLMInvocationRequest):
        self.requests.append(request)
        script = self.rounds.pop(0) if self.rounds else [StreamChunk.completed()]
        for position, item in enumerate(script):
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            if isinstance(item, Exception):
                raise item
            if self.before_chunk is not None:
                outcome = self.before_chunk(position, item)
                if asyncio.iscoroutine(outcome):
                    await outcome
            yield item

    async def invoke(self, request: LLMInvocationRequest) -> LLMInvocationResult:
        self.invoke_requests.append(request)
        return LLMInvocationResult(content=self.summary, input_tokens=10, output_tokens=5)


class RecordingConnection(OutputConnection):
    pass


class RecordingTransport(MessageTransport[RecordingConnection]):
    """Transport that records every call for assertions."""

    def __init__(self) -> None:
        self.events: List[ChatEvent] = []
        self.end_events: List[ChatEvent] = []
        self.completed: int = 0
        self.errors: List[BaseException] = []

    def create_connection(self, timeout: float) -> RecordingConnection:
        return RecordingConnection(timeout)

    async def send_message(self, connection: RecordingConnection, event: ChatEvent) -> None:
        self.events.append(event)

    async def send_end_message(self, connection: RecordingConnection, event: ChatEvent) -> None:
        event.done = True
        self.end_events.append(event)
        connection.closed = True

    async def complete_connection(self, connection: RecordingConnection) -> None:
        self.completed += 1
        connection.closed = True

    async def handle_error(self, connection: RecordingConnection, error: BaseException) -> None:
        self.errors.append(error)
        connection.closed = True

    def of_type(self, event_type: ChatEventType) -> List[ChatEvent]:
        return [e for e in self.events if e.type == event_type]

    @property
    def terminal_count(self) -> int:
        return len(self.end_events) + self.completed + len(self.errors)


class EchoTool(AgentTool):
    """Tool returning its input, optionally after a delay."""

    def __init__(self, name: str = "echo", delay: float = 0.0, result: Optional[str] = None):
        super().__init__(name=name, description="Echo the given text")
        self.delay = delay
        self.result = result
        self.calls: List[Dict[str, Any]] = []

    def get_parameters_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        }

    async def execute(self, turn, /, text: str = "", **kwargs: Any) -> str:
        self.calls.append({"text": text, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result if self.result is not None else f"echo: {text}"


class FakeToolGateway(ToolGatewayPort):
    """Maps server names to prepared tools."""

    def __init__(self, tools_by_server: Optional[Dict[str, List[AgentTool]]] = None) -> None:
        self.tools_by_server = tools_by_server or {}

    async def resolve_servers(self, tool_ids: List[str], user_id: str) -> List[str]:
        return [tool_id for tool_id in dict.fromkeys(tool_ids) if tool_id in self.tools_by_server]

    async def load_tools(self, server_name: str, user_id: str, agent: Agent) -> List[AgentTool]:
        return list(self.tools_by_server.get(server_name, []))


# --- Database Fixtures ---


@pytest.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def sql_message_repository(session_factory) -> SqlMessageRepository:
    return SqlMessageRepository(session_factory)


# --- Domain Fixtures ---


@pytest.fixture
def provider() -> Provider:
    return Provider(id=TEST_PROVIDER_ID, name="primary", protocol="openai", api_key="sk-test")


@pytest.fixture
def model() -> LLMModel:
    return LLMModel(id=TEST_MODEL_ID, provider_id=TEST_PROVIDER_ID, model_name="gpt-4o-mini")


@pytest.fixture
def agent() -> Agent:
    return Agent(
        id=TEST_AGENT_ID,
        owner_id=TEST_USER_ID,
        name="Main",
        system_prompt="You are helpful.",
    )


@pytest.fixture
def session() -> Session:
    return Session(id=TEST_SESSION_ID, agent_id=TEST_AGENT_ID, user_id=TEST_USER_ID)


@pytest.fixture
def session_repository(session) -> InMemorySessionRepository:
    return InMemorySessionRepository([session])


@pytest.fixture
def agent_repository(agent) -> InMemoryAgentRepository:
    repository = InMemoryAgentRepository()
    repository.add(agent)
    return repository


@pytest.fixture
def llm_catalog(provider, model) -> InMemoryLLMCatalogRepository:
    catalog = InMemoryLLMCatalogRepository()
    catalog.add_provider(provider)
    catalog.add_model(model)
    return catalog


@pytest.fixture
def workspace_repository() -> InMemoryWorkspaceRepository:
    return InMemoryWorkspaceRepository()


@pytest.fixture
def user_settings_repository() -> InMemoryUserSettingsRepository:
    repository = InMemoryUserSettingsRepository()
    repository.add(UserSettings(user_id=TEST_USER_ID, default_model_id=TEST_MODEL_ID))
    repository.add(UserSettings(user_id=OTHER_USER_ID, default_model_id=TEST_MODEL_ID))
    return repository


@pytest.fixture
def message_repository() -> FakeMessageRepository:
    return FakeMessageRepository()


@pytest.fixture
def llm_invoker() -> ScriptedLLMInvoker:
    return ScriptedLLMInvoker()


@pytest.fixture
def tool_gateway() -> FakeToolGateway:
    return FakeToolGateway()


@pytest.fixture
def registry() -> StreamSessionRegistry:
    return StreamSessionRegistry()


@pytest.fixture
def breakers() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry()


@pytest.fixture
def provider_selector(llm_catalog, breakers) -> CircuitBreakerProviderSelector:
    return CircuitBreakerProviderSelector(llm_catalog, breakers)


@pytest.fixture
def delegate_calls() -> List[Dict[str, Any]]:
    return []


@pytest.fixture
def delegate_callback(delegate_calls):
    """Records delegation requests and answers with a fixed text."""

    async def _delegate(request, user_id, target_agent_id, delegation_depth) -> str:
        delegate_calls.append(
            {
                "request": request,
                "user_id": user_id,
                "target_agent_id": target_agent_id,
                "delegation_depth": delegation_depth,
            }
        )
        return "sub-agent answer"

    return _delegate


@pytest.fixture
def subagent_factory(agent_repository, message_repository, registry, delegate_callback):
    return SubAgentToolFactory(agent_repository, message_repository, registry, delegate_callback)


@pytest.fixture
def tool_provisioner(tool_gateway, subagent_factory) -> ToolProvisioner:
    return ToolProvisioner(tool_gateway, subagent_factory, max_delegation_depth=1)


@pytest.fixture
def assembler(
    session_repository,
    agent_repository,
    llm_catalog,
    workspace_repository,
    user_settings_repository,
    message_repository,
    tool_gateway,
    provider_selector,
    llm_invoker,
) -> ContextAssembler:
    from dialogue_engine.infrastructure.llm.summarizer import LLMSummarizer

    return ContextAssembler(
        session_repository=session_repository,
        agent_repository=agent_repository,
        llm_catalog=llm_catalog,
        workspace_repository=workspace_repository,
        user_settings_repository=user_settings_repository,
        message_repository=message_repository,
        tool_gateway=tool_gateway,
        provider_selector=provider_selector,
        token_budget_manager=TokenBudgetManager(),
        summarizer=LLMSummarizer(llm_invoker),
    )


@pytest.fixture
def orchestrator(
    llm_invoker, message_repository, tool_provisioner, registry, provider_selector
) -> StreamingOrchestrator:
    return StreamingOrchestrator(
        llm_invoker=llm_invoker,
        message_repository=message_repository,
        tool_provisioner=tool_provisioner,
        registry=registry,
        provider_selector=provider_selector,
    )


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()
