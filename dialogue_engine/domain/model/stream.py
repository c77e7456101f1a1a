"""Transport events and per-session streaming state."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

if TYPE_CHECKING:
    from dialogue_engine.domain.ports.transport_port import MessageTransport, OutputConnection


class ChatEventType(str, Enum):
    """Types of events pushed to a transport."""

    PARTIAL_TEXT = "partial_text"
    END_OF_TEXT = "end_of_text"
    TOOL_INVOKED = "tool_invoked"
    SUB_AGENT_CALL_STARTED = "sub_agent_call_started"
    SUB_AGENT_CALL_COMPLETE = "sub_agent_call_complete"
    SUB_AGENT_CALL_ERROR = "sub_agent_call_error"
    ERROR = "error"


@dataclass
class ChatEvent:
    """
    A typed event delivered to the caller.

    ``done`` marks the terminal event of a connection.
    """

    type: ChatEventType
    content: str = ""
    done: bool = False
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def partial_text(cls, delta: str) -> ChatEvent:
        return cls(ChatEventType.PARTIAL_TEXT, delta)

    @classmethod
    def end_of_text(cls, text: str, done: bool = False) -> ChatEvent:
        return cls(ChatEventType.END_OF_TEXT, text, done=done)

    @classmethod
    def tool_invoked(cls, tool_name: str) -> ChatEvent:
        return cls(ChatEventType.TOOL_INVOKED, tool_name)

    @classmethod
    def sub_agent_call_started(cls, agent_name: str) -> ChatEvent:
        return cls(ChatEventType.SUB_AGENT_CALL_STARTED, agent_name)

    @classmethod
    def sub_agent_call_complete(cls, agent_name: str) -> ChatEvent:
        return cls(ChatEventType.SUB_AGENT_CALL_COMPLETE, agent_name)

    @classmethod
    def sub_agent_call_error(cls, message: str) -> ChatEvent:
        return cls(ChatEventType.SUB_AGENT_CALL_ERROR, message)

    @classmethod
    def error(cls, message: str) -> ChatEvent:
        return cls(ChatEventType.ERROR, message, done=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "content": self.content,
            "done": self.done,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        """Format as a Server-Sent Events frame."""
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"


@dataclass
class StreamState:
    """
    Live streaming state of one session.

    Once ``is_active`` is cleared (interruption) every late model callback
    for the owning turn is ignored.
    """

    session_id: str
    connection: OutputConnection
    transport: MessageTransport
    is_active: bool = True
    is_completed: bool = False
    partial_content: List[str] = field(default_factory=list)

    def append_partial(self, delta: str) -> None:
        self.partial_content.append(delta)

    @property
    def partial_text(self) -> str:
        return "".join(self.partial_content)

    def deactivate(self) -> None:
        self.is_active = False

    def mark_completed(self) -> None:
        self.is_completed = True

    @property
    def is_live(self) -> bool:
        return self.is_active and not self.is_completed
