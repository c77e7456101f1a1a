"""
Conversation Service - entry point for chat turns.

Top-level streaming turns are registered in the Stream Session Registry
(interrupting any older stream of the session) and run on their own task.
Single-shot turns block for one final result. Delegated turns reuse the
single-shot path for an explicitly named agent of the same session.
"""

import asyncio
import logging
from typing import List, Optional, Set

from dialogue_engine.application.services.context_assembler import ContextAssembler
from dialogue_engine.application.services.stream_session_registry import StreamSessionRegistry
from dialogue_engine.application.services.streaming_orchestrator import StreamingOrchestrator
from dialogue_engine.domain.model.conversation import Message
from dialogue_engine.domain.model.stream import ChatEvent
from dialogue_engine.domain.model.turn import ChatRequest
from dialogue_engine.domain.ports.repositories import MessageRepository
from dialogue_engine.infrastructure.transport import (
    SingleShotTransport,
    StreamConnection,
    StreamingTransport,
)

logger = logging.getLogger(__name__)


class ConversationService:
    """Runs chat turns on behalf of callers."""

    def __init__(
        self,
        assembler: ContextAssembler,
        orchestrator: StreamingOrchestrator,
        registry: StreamSessionRegistry,
        message_repository: MessageRepository,
        streaming_transport: Optional[StreamingTransport] = None,
        single_shot_transport: Optional[SingleShotTransport] = None,
        connection_timeout: float = 3000.0,
    ) -> None:
        self._assembler = assembler
        self._orchestrator = orchestrator
        self._registry = registry
        self._messages = message_repository
        self._streaming = streaming_transport or StreamingTransport()
        self._single_shot = single_shot_transport or SingleShotTransport()
        self._connection_timeout = connection_timeout
        self._tasks: Set[asyncio.Task] = set()

    async def chat(self, request: ChatRequest, user_id: str) -> StreamConnection:
        """
        Start a streaming turn and return its connection.

        Resolution errors are raised here, before any connection is opened.
        """
        turn = await self._assembler.assemble(request, user_id, streaming=True)
        connection = self._streaming.create_connection(self._connection_timeout)
        state = await self._registry.register(request.session_id, connection, self._streaming)
        task = asyncio.create_task(
            self._orchestrator.execute(turn, self._streaming, connection, state),
            name=f"turn-{turn.turn_id[:8]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return connection

    async def chat_sync(self, request: ChatRequest, user_id: str) -> ChatEvent:
        """Run a turn in single-shot mode and return its final event."""
        turn = await self._assembler.assemble(request, user_id, streaming=False)
        connection = self._single_shot.create_connection(self._connection_timeout)
        await self._orchestrator.execute(turn, self._single_shot, connection)
        return await connection.wait()

    async def chat_with_agent(
        self,
        request: ChatRequest,
        user_id: str,
        target_agent_id: str,
        suppress_persistence: bool = True,
        delegation_depth: int = 1,
    ) -> ChatEvent:
        """Run a single-shot turn for ``target_agent_id`` inside ``request.session_id``."""
        turn = await self._assembler.assemble_for_agent(
            request,
            user_id,
            target_agent_id,
            suppress_persistence=suppress_persistence,
            delegation_depth=delegation_depth,
        )
        connection = self._single_shot.create_connection(self._connection_timeout)
        await self._orchestrator.execute(turn, self._single_shot, connection)
        return await connection.wait()

    async def delegate(
        self, request: ChatRequest, user_id: str, target_agent_id: str, delegation_depth: int
    ) -> str:
        """Callback used by sub-agent tools; returns the sub-turn's final text."""
        event = await self.chat_with_agent(
            request,
            user_id,
            target_agent_id,
            suppress_persistence=True,
            delegation_depth=delegation_depth,
        )
        return event.content

    async def interrupt(self, session_id: str, user_id: str) -> bool:
        await self._assembler.load_session(session_id, user_id)
        return await self._registry.interrupt_existing(session_id)

    async def list_messages(self, session_id: str, user_id: str) -> List[Message]:
        """Active (prompt) messages of one of the caller's sessions, in order."""
        await self._assembler.load_session(session_id, user_id)
        context = await self._messages.get_context(session_id)
        if context is None:
            return []
        return await self._messages.load_by_ids(context.active_message_ids)

    async def shutdown(self) -> None:
        """Cancel turns still running."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[ConversationService] Turn task {task.get_name()} raised: {error}", exc_info=error)
