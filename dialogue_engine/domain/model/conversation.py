"""Session, message and conversation-context entities."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from dialogue_engine.domain.shared_kernel import Entity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Role of the message sender."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    SUMMARY = "summary"


class MessageType(str, Enum):
    """Type tag of a persisted message."""

    TEXT = "text"
    TOOL_CALL = "tool_call"  # "tool invoked" marker
    SUB_AGENT_CALL_START = "sub_agent_call_start"  # delegation marker


@dataclass(kw_only=True)
class Session(Entity):
    """A conversation between one user and one agent."""

    agent_id: str
    user_id: str
    title: str = ""
    created_at: datetime = field(default_factory=_utcnow)


@dataclass(kw_only=True)
class Message(Entity):
    """
    A single persisted message of a session.

    Messages are append-only; the only update is the token backfill after
    the model call that consumed or produced them completes.
    """

    session_id: str
    role: MessageRole
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    file_urls: List[str] = field(default_factory=list)
    token_count: int = 0  # total, including injected context
    body_token_count: int = 0  # this message's own text
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    def is_summary(self) -> bool:
        return self.role == MessageRole.SUMMARY

    def has_files(self) -> bool:
        return bool(self.file_urls)

    @property
    def budget_tokens(self) -> int:
        """Token count used by the budget strategies."""
        return self.body_token_count


@dataclass(kw_only=True)
class ConversationContext(Entity):
    """
    Ordered list of a session's active message ids plus a rolling summary.

    Hydrating ``active_message_ids`` reconstructs the prompt history.
    """

    session_id: str
    active_message_ids: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def activate(self, message_ids: Iterable[str]) -> None:
        """Append newly persisted messages to the active list."""
        for message_id in message_ids:
            if message_id not in self.active_message_ids:
                self.active_message_ids.append(message_id)
        self.updated_at = _utcnow()

    def rewrite(self, message_ids: Iterable[str], summary: Optional[str]) -> None:
        """Replace the active list, e.g. after summarization."""
        self.active_message_ids = list(message_ids)
        self.summary = summary
        self.updated_at = _utcnow()
