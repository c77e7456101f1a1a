"""Tests for ConversationService."""

import asyncio

import pytest

from dialogue_engine.application.services.conversation_service import ConversationService
from dialogue_engine.domain.exceptions import ModelInvocationError, NotFoundError
from dialogue_engine.domain.model.agent import Agent, AgentVersion
from dialogue_engine.domain.model.conversation import MessageRole, Session
from dialogue_engine.domain.model.stream import ChatEventType
from dialogue_engine.domain.model.turn import ChatRequest
from dialogue_engine.domain.ports.llm_invoker_port import StreamChunk
from dialogue_engine.tests.conftest import (
    OTHER_USER_ID,
    TEST_AGENT_ID,
    TEST_SESSION_ID,
    TEST_USER_ID,
    make_message,
)


@pytest.fixture
def service(assembler, orchestrator, registry, message_repository):
    return ConversationService(
        assembler, orchestrator, registry, message_repository, connection_timeout=30.0
    )


@pytest.fixture
def helper_agent(agent_repository):
    return agent_repository.add(
        Agent(id="agent-helper", owner_id=TEST_USER_ID, name="Helper", system_prompt="Assist.")
    )


def _hello_round():
    return [
        StreamChunk.text("Hi"),
        StreamChunk.text(" there"),
        StreamChunk.completed("Hi there", input_tokens=8, output_tokens=2),
    ]


@pytest.mark.unit
class TestStreamingChat:
    async def test_chat_streams_until_end_of_text(self, service, llm_invoker):
        llm_invoker.rounds = [_hello_round()]

        connection = await service.chat(ChatRequest(session_id=TEST_SESSION_ID, message="hi"), TEST_USER_ID)
        events = [event async for event in connection.events()]

        assert [e.type for e in events] == [
            ChatEventType.PARTIAL_TEXT,
            ChatEventType.PARTIAL_TEXT,
            ChatEventType.END_OF_TEXT,
        ]
        assert events[-1].content == "Hi there"
        assert events[-1].done is True
        await service.shutdown()

    async def test_resolution_error_raised_before_streaming(self, service, registry):
        with pytest.raises(NotFoundError):
            await service.chat(ChatRequest(session_id="missing", message="hi"), TEST_USER_ID)

        assert registry.active_sessions() == []

    async def test_new_chat_interrupts_running_one(self, service, llm_invoker):
        llm_invoker.chunk_delay = 0.05
        llm_invoker.rounds = [
            [StreamChunk.text("slow ") for _ in range(20)] + [StreamChunk.completed()],
            _hello_round(),
        ]
        request = ChatRequest(session_id=TEST_SESSION_ID, message="hi")

        first = await service.chat(request, TEST_USER_ID)
        await asyncio.sleep(0.12)
        second = await service.chat(request, TEST_USER_ID)

        first_events = [event async for event in first.events()]
        second_events = [event async for event in second.events()]

        assert all(e.type == ChatEventType.PARTIAL_TEXT for e in first_events)
        assert second_events[-1].type == ChatEventType.END_OF_TEXT
        assert second_events[-1].content == "Hi there"
        await service.shutdown()

    async def test_interrupt(self, service, llm_invoker, registry):
        llm_invoker.chunk_delay = 0.05
        llm_invoker.rounds = [[StreamChunk.text("x") for _ in range(20)] + [StreamChunk.completed()]]

        connection = await service.chat(ChatRequest(session_id=TEST_SESSION_ID, message="hi"), TEST_USER_ID)
        await asyncio.sleep(0.08)

        assert await service.interrupt(TEST_SESSION_ID, TEST_USER_ID) is True
        events = [event async for event in connection.events()]
        assert ChatEventType.END_OF_TEXT not in [e.type for e in events]
        assert ChatEventType.ERROR not in [e.type for e in events]
        assert await service.interrupt(TEST_SESSION_ID, TEST_USER_ID) is False
        await service.shutdown()

    async def test_shutdown_cancels_running_turns(self, service, llm_invoker):
        llm_invoker.chunk_delay = 1.0
        llm_invoker.rounds = [[StreamChunk.text("x"), StreamChunk.completed()]]

        connection = await service.chat(ChatRequest(session_id=TEST_SESSION_ID, message="hi"), TEST_USER_ID)
        await asyncio.sleep(0.05)
        await service.shutdown()

        assert connection.closed is True


@pytest.mark.unit
class TestSingleShotChat:
    async def test_chat_sync_returns_final_event(self, service, llm_invoker, message_repository):
        llm_invoker.rounds = [_hello_round()]

        event = await service.chat_sync(ChatRequest(session_id=TEST_SESSION_ID, message="hi"), TEST_USER_ID)

        assert event.type == ChatEventType.END_OF_TEXT
        assert event.content == "Hi there"
        assert event.done is True
        assert [m.role for m in message_repository.written()] == [MessageRole.USER, MessageRole.ASSISTANT]

    async def test_chat_sync_raises_turn_error(self, service, llm_invoker):
        llm_invoker.rounds = [[RuntimeError("provider down")]]

        with pytest.raises(ModelInvocationError):
            await service.chat_sync(ChatRequest(session_id=TEST_SESSION_ID, message="hi"), TEST_USER_ID)

    async def test_list_messages_follows_active_order(self, service, llm_invoker):
        llm_invoker.rounds = [_hello_round()]
        await service.chat_sync(ChatRequest(session_id=TEST_SESSION_ID, message="hi"), TEST_USER_ID)

        messages = await service.list_messages(TEST_SESSION_ID, TEST_USER_ID)

        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "hi"),
            (MessageRole.ASSISTANT, "Hi there"),
        ]

    async def test_list_messages_of_empty_session(self, service):
        assert await service.list_messages(TEST_SESSION_ID, TEST_USER_ID) == []


@pytest.mark.unit
class TestSessionOwnership:
    @pytest.fixture
    def foreign_session(self, session_repository, agent_repository):
        agent_repository.publish(
            AgentVersion(agent_id=TEST_AGENT_ID, version_number="1.0.0", system_prompt="Published.")
        )
        return session_repository.add(
            Session(id="s-foreign", agent_id=TEST_AGENT_ID, user_id=OTHER_USER_ID)
        )

    async def test_cannot_chat_in_foreign_session(self, service, foreign_session, registry):
        with pytest.raises(NotFoundError):
            await service.chat(ChatRequest(session_id=foreign_session.id, message="hi"), TEST_USER_ID)

        assert registry.active_sessions() == []

    async def test_cannot_read_foreign_history(self, service, foreign_session, message_repository):
        message_repository.seed(foreign_session.id, [make_message(5, 0, session_id=foreign_session.id)])

        with pytest.raises(NotFoundError):
            await service.list_messages(foreign_session.id, TEST_USER_ID)

        messages = await service.list_messages(foreign_session.id, OTHER_USER_ID)
        assert [m.id for m in messages] == ["msg-000"]

    async def test_cannot_interrupt_foreign_stream(self, service, foreign_session, llm_invoker):
        llm_invoker.chunk_delay = 0.05
        llm_invoker.rounds = [[StreamChunk.text("x") for _ in range(10)] + [StreamChunk.completed()]]
        request = ChatRequest(session_id=foreign_session.id, message="hi")
        connection = await service.chat(request, OTHER_USER_ID)
        await asyncio.sleep(0.05)

        with pytest.raises(NotFoundError):
            await service.interrupt(foreign_session.id, TEST_USER_ID)

        events = [event async for event in connection.events()]
        assert events[-1].type == ChatEventType.END_OF_TEXT
        await service.shutdown()


@pytest.mark.unit
class TestAgentChat:
    async def test_chat_with_agent_persists_when_asked(
        self, service, llm_invoker, message_repository, helper_agent
    ):
        llm_invoker.rounds = [_hello_round()]

        event = await service.chat_with_agent(
            ChatRequest(session_id=TEST_SESSION_ID, message="hi"),
            TEST_USER_ID,
            helper_agent.id,
            suppress_persistence=False,
        )

        assert event.content == "Hi there"
        assert len(message_repository.written()) == 2
        prompt = llm_invoker.requests[0].messages
        assert prompt[0] == {"role": "system", "content": "Assist."}

    async def test_delegate_returns_text_without_persisting(
        self, service, llm_invoker, message_repository, helper_agent
    ):
        llm_invoker.rounds = [_hello_round()]

        text = await service.delegate(
            ChatRequest(session_id=TEST_SESSION_ID, message="summarize"),
            TEST_USER_ID,
            helper_agent.id,
            delegation_depth=1,
        )

        assert text == "Hi there"
        assert message_repository.written() == []

    async def test_delegate_to_missing_agent(self, service):
        with pytest.raises(NotFoundError):
            await service.delegate(
                ChatRequest(session_id=TEST_SESSION_ID, message="x"), TEST_USER_ID, "ghost", 1
            )
