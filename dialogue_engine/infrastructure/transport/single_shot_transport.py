"""
Single-shot transport.

The caller blocks for exactly one final result: the terminal end event, or
the error that failed the turn.
"""

import asyncio
import logging
from typing import List

from dialogue_engine.domain.exceptions import ModelInvocationError, StreamTimeoutError
from dialogue_engine.domain.model.stream import ChatEvent, ChatEventType
from dialogue_engine.domain.ports.transport_port import MessageTransport, OutputConnection

logger = logging.getLogger(__name__)


class SingleShotConnection(OutputConnection):
    """Connection resolving one future with the final event."""

    def __init__(self, timeout: float) -> None:
        super().__init__(timeout)
        self.result: asyncio.Future[ChatEvent] = asyncio.get_running_loop().create_future()
        self.partial_text: List[str] = []

    async def wait(self) -> ChatEvent:
        """Block for the final event; raises the turn's error if it failed."""
        if self.result.done():
            return self.result.result()
        try:
            return await asyncio.wait_for(asyncio.shield(self.result), timeout=max(self.remaining(), 0))
        except asyncio.TimeoutError:
            raise StreamTimeoutError(self.timeout) from None


class SingleShotTransport(MessageTransport[SingleShotConnection]):
    """Collects a turn into one ChatEvent."""

    def create_connection(self, timeout: float) -> SingleShotConnection:
        return SingleShotConnection(timeout)

    async def send_message(self, connection: SingleShotConnection, event: ChatEvent) -> None:
        # only the final result is delivered; partial text is kept for silent completion
        if event.type == ChatEventType.PARTIAL_TEXT:
            connection.partial_text.append(event.content)

    async def send_end_message(self, connection: SingleShotConnection, event: ChatEvent) -> None:
        event.done = True
        self._resolve(connection, event)

    async def complete_connection(self, connection: SingleShotConnection) -> None:
        self._resolve(connection, ChatEvent.end_of_text("".join(connection.partial_text), done=True))

    async def handle_error(self, connection: SingleShotConnection, error: BaseException) -> None:
        connection.closed = True
        if connection.result.done():
            return
        if not isinstance(error, ModelInvocationError):
            error = ModelInvocationError(str(error), original_error=error)
        connection.result.set_exception(error)

    @staticmethod
    def _resolve(connection: SingleShotConnection, event: ChatEvent) -> None:
        connection.closed = True
        if connection.result.done():
            logger.debug(f"[SingleShot] Connection {connection.connection_id[:8]} already resolved")
            return
        connection.result.set_result(event)
