"""Request and response bodies of the conversation API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dialogue_engine.domain.model.conversation import Message
from dialogue_engine.domain.model.stream import ChatEvent


class ChatRequestBody(BaseModel):
    message: str = Field(..., min_length=1, description="User message text")
    file_urls: List[str] = Field(default_factory=list, description="Attached file URLs")
    model_id: Optional[str] = Field(default=None, description="Explicit model override")


class DelegatedChatRequestBody(ChatRequestBody):
    target_agent_id: str = Field(..., description="Agent that answers inside this session")


class ChatEventResponse(BaseModel):
    type: str
    content: str
    done: bool
    timestamp: float

    @classmethod
    def from_event(cls, event: ChatEvent) -> "ChatEventResponse":
        return cls(
            type=event.type.value, content=event.content, done=event.done, timestamp=event.timestamp
        )


class MessageResponse(BaseModel):
    id: str
    session_id: str
    role: str
    content: str
    message_type: str
    file_urls: List[str]
    token_count: int
    body_token_count: int
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_domain(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            session_id=message.session_id,
            role=message.role.value,
            content=message.content,
            message_type=message.message_type.value,
            file_urls=list(message.file_urls),
            token_count=message.token_count,
            body_token_count=message.body_token_count,
            provider_id=message.provider_id,
            model_id=message.model_id,
            metadata=dict(message.metadata),
            created_at=message.created_at,
        )


class InterruptResponse(BaseModel):
    session_id: str
    interrupted: bool
