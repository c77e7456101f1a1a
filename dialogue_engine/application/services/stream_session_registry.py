"""
Stream Session Registry

Tracks the live output connection of each session:
- register a new top-level stream (interrupting an older live one)
- look up the live connection for side-channel events
- release entries when a stream ends
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from dialogue_engine.domain.model.stream import ChatEvent, StreamState
from dialogue_engine.domain.ports.transport_port import MessageTransport, OutputConnection

logger = logging.getLogger(__name__)


class StreamSessionRegistry:
    """
    Session id -> StreamState map owned by one long-lived service instance.

    Every mutation for a session runs under that session's lock, so
    check-and-replace is atomic per session while independent sessions never
    contend.
    """

    def __init__(self) -> None:
        self._states: Dict[str, StreamState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                del self._locks[session_id]

    async def register(
        self,
        session_id: str,
        connection: OutputConnection,
        transport: MessageTransport,
    ) -> StreamState:
        """Install a new live stream, completing any older live one first."""
        async with self._session_lock(session_id):
            await self._interrupt_locked(session_id)
            state = StreamState(session_id=session_id, connection=connection, transport=transport)
            self._states[session_id] = state
        logger.info(
            f"[StreamRegistry] Registered stream {connection.connection_id[:8]} "
            f"for session {session_id}. Active: {len(self._states)}"
        )
        return state

    def get(self, session_id: str) -> Optional[StreamState]:
        """Return the live stream state of a session, if any."""
        state = self._states.get(session_id)
        if state is None or not state.is_live:
            return None
        return state

    def get_connection(self, session_id: str) -> Optional[OutputConnection]:
        state = self.get(session_id)
        return state.connection if state else None

    async def send(self, session_id: str, event: ChatEvent) -> bool:
        """Push a side-channel event onto the live connection without owning it."""
        state = self.get(session_id)
        if state is None:
            return False
        await state.transport.send_message(state.connection, event)
        return True

    async def interrupt_existing(self, session_id: str) -> bool:
        """Complete the session's live stream, if any. Returns True if one was interrupted."""
        async with self._session_lock(session_id):
            return await self._interrupt_locked(session_id)

    async def release(self, session_id: str, state: Optional[StreamState] = None) -> None:
        """
        Remove the session's entry.

        When ``state`` is given, only that exact state is removed, so a late
        release from a superseded stream never evicts its successor.
        """
        async with self._session_lock(session_id):
            current = self._states.get(session_id)
            if current is None:
                return
            if state is not None and current is not state:
                return
            current.mark_completed()
            del self._states[session_id]
        logger.debug(f"[StreamRegistry] Released session {session_id}. Active: {len(self._states)}")

    def active_sessions(self) -> List[str]:
        return [sid for sid, state in self._states.items() if state.is_live]

    async def _interrupt_locked(self, session_id: str) -> bool:
        old = self._states.pop(session_id, None)
        if old is None or not old.is_live:
            return False
        old.deactivate()
        await old.transport.complete_connection(old.connection)
        logger.info(
            f"[StreamRegistry] Interrupted stream {old.connection.connection_id[:8]} "
            f"for session {session_id}"
        )
        return True
