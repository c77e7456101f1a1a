"""
Transport port - how turn events reach the caller.

Two kinds exist: push-streaming (many events, caller does not block) and
single-shot (caller blocks for exactly one final result).
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from dialogue_engine.domain.model.stream import ChatEvent


class OutputConnection:
    """A connection with a fixed maximum lifetime."""

    def __init__(self, timeout: float) -> None:
        self.connection_id = str(uuid.uuid4())
        self.timeout = timeout
        self.deadline = asyncio.get_running_loop().time() + timeout
        self.closed = False

    def remaining(self) -> float:
        """Seconds left before the connection's lifetime is exceeded."""
        return self.deadline - asyncio.get_running_loop().time()

    @property
    def is_expired(self) -> bool:
        return self.remaining() <= 0


ConnectionT = TypeVar("ConnectionT", bound=OutputConnection)


class MessageTransport(ABC, Generic[ConnectionT]):
    """Delivers ChatEvents over a connection."""

    @abstractmethod
    def create_connection(self, timeout: float) -> ConnectionT:
        """Open a new connection that expires after ``timeout`` seconds."""

    @abstractmethod
    async def send_message(self, connection: ConnectionT, event: ChatEvent) -> None:
        """Push a non-terminal event."""

    @abstractmethod
    async def send_end_message(self, connection: ConnectionT, event: ChatEvent) -> None:
        """Push the terminal event and close the connection."""

    @abstractmethod
    async def complete_connection(self, connection: ConnectionT) -> None:
        """Close the connection silently (no error event)."""

    @abstractmethod
    async def handle_error(self, connection: ConnectionT, error: BaseException) -> None:
        """Push a terminal error event and close the connection."""
