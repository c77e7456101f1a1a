from fastapi import Header, HTTPException, Request

from dialogue_engine.application.services.conversation_service import ConversationService
from dialogue_engine.configuration.di_container import DIContainer


def get_container(request: Request) -> DIContainer:
    """Get the DI container from app state."""
    return request.app.state.container


def get_conversation_service(request: Request) -> ConversationService:
    return get_container(request).conversation_service()


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity; authentication happens upstream of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
