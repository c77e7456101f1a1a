"""
Push-streaming transport.

Each connection is a queue of ChatEvents drained by the HTTP layer as
Server-Sent Events. Producers never block on the consumer.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

from dialogue_engine.domain.model.stream import ChatEvent
from dialogue_engine.domain.ports.transport_port import MessageTransport, OutputConnection

logger = logging.getLogger(__name__)


class StreamConnection(OutputConnection):
    """Queue-backed connection; ``None`` on the queue marks the end."""

    def __init__(self, timeout: float, consumer_grace: float = 5.0) -> None:
        super().__init__(timeout)
        self._queue: asyncio.Queue[Optional[ChatEvent]] = asyncio.Queue()
        self._consumer_grace = consumer_grace

    def put(self, event: ChatEvent) -> None:
        if self.closed:
            logger.debug(f"[SSE] Dropping {event.type.value} on closed connection {self.connection_id[:8]}")
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[ChatEvent]:
        """Yield events until the connection closes or its lifetime (plus grace) ends."""
        while True:
            remaining = self.remaining() + self._consumer_grace
            if remaining <= 0:
                logger.warning(f"[SSE] Connection {self.connection_id[:8]} expired without a terminal event")
                return
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning(f"[SSE] Connection {self.connection_id[:8]} expired without a terminal event")
                return
            if event is None:
                return
            yield event


class StreamingTransport(MessageTransport[StreamConnection]):
    """Many events per connection; the caller consumes ``connection.events()``."""

    def __init__(self, consumer_grace: float = 5.0) -> None:
        self._consumer_grace = consumer_grace

    def create_connection(self, timeout: float) -> StreamConnection:
        return StreamConnection(timeout, consumer_grace=self._consumer_grace)

    async def send_message(self, connection: StreamConnection, event: ChatEvent) -> None:
        connection.put(event)

    async def send_end_message(self, connection: StreamConnection, event: ChatEvent) -> None:
        event.done = True
        connection.put(event)
        connection.close()

    async def complete_connection(self, connection: StreamConnection) -> None:
        connection.close()

    async def handle_error(self, connection: StreamConnection, error: BaseException) -> None:
        connection.put(ChatEvent.error(str(error)))
        connection.close()
