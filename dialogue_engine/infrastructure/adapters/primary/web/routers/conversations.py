"""
Conversation API routes.

POST /chat streams the turn as Server-Sent Events; POST /chat/sync blocks
for the final result. Opening a new stream for a session interrupts the
previous one.
"""

import logging
from typing import AsyncGenerator, List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from dialogue_engine.application.services.conversation_service import ConversationService
from dialogue_engine.domain.exceptions import (
    DisabledError,
    ModelInvocationError,
    NotFoundError,
    ResolutionError,
    StreamTimeoutError,
)
from dialogue_engine.domain.model.turn import ChatRequest
from dialogue_engine.infrastructure.adapters.primary.web.dependencies import (
    get_conversation_service,
    get_current_user_id,
)
from dialogue_engine.infrastructure.adapters.primary.web.schemas import (
    ChatEventResponse,
    ChatRequestBody,
    DelegatedChatRequestBody,
    InterruptResponse,
    MessageResponse,
)
from dialogue_engine.infrastructure.transport import StreamConnection

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/conversations", tags=["conversations"])


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, DisabledError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, ResolutionError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, StreamTimeoutError):
        return HTTPException(status_code=504, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))


async def _sse_generator(connection: StreamConnection) -> AsyncGenerator[str, None]:
    async for event in connection.events():
        yield event.to_sse()


@router.post("/{session_id}/chat")
async def chat(
    session_id: str,
    body: ChatRequestBody,
    user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> StreamingResponse:
    """Start a turn and stream its events."""
    request = ChatRequest(
        session_id=session_id, message=body.message, file_urls=body.file_urls, model_id=body.model_id
    )
    try:
        connection = await service.chat(request, user_id)
    except ResolutionError as e:
        logger.info(f"[ConversationsAPI] Rejected chat for session {session_id}: {e}")
        raise _to_http_error(e) from e

    return StreamingResponse(
        _sse_generator(connection),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.post("/{session_id}/chat/sync", response_model=ChatEventResponse)
async def chat_sync(
    session_id: str,
    body: ChatRequestBody,
    user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> ChatEventResponse:
    """Run a turn and return only its final result."""
    request = ChatRequest(
        session_id=session_id, message=body.message, file_urls=body.file_urls, model_id=body.model_id
    )
    try:
        event = await service.chat_sync(request, user_id)
    except (ResolutionError, ModelInvocationError, StreamTimeoutError) as e:
        logger.warning(f"[ConversationsAPI] Sync chat failed for session {session_id}: {e}")
        raise _to_http_error(e) from e
    return ChatEventResponse.from_event(event)


@router.post("/{session_id}/chat/agent", response_model=ChatEventResponse)
async def chat_with_agent(
    session_id: str,
    body: DelegatedChatRequestBody,
    user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> ChatEventResponse:
    """Ask another agent inside this session; its messages are persisted."""
    request = ChatRequest(
        session_id=session_id, message=body.message, file_urls=body.file_urls, model_id=body.model_id
    )
    try:
        event = await service.chat_with_agent(
            request, user_id, body.target_agent_id, suppress_persistence=False
        )
    except (ResolutionError, ModelInvocationError, StreamTimeoutError) as e:
        logger.warning(f"[ConversationsAPI] Agent chat failed for session {session_id}: {e}")
        raise _to_http_error(e) from e
    return ChatEventResponse.from_event(event)


@router.post("/{session_id}/interrupt", response_model=InterruptResponse)
async def interrupt(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> InterruptResponse:
    try:
        interrupted = await service.interrupt(session_id, user_id)
    except ResolutionError as e:
        raise _to_http_error(e) from e
    logger.info(f"[ConversationsAPI] User {user_id} interrupt on {session_id}: {interrupted}")
    return InterruptResponse(session_id=session_id, interrupted=interrupted)


@router.get("/{session_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> List[MessageResponse]:
    """Active messages of the session, oldest first."""
    try:
        messages = await service.list_messages(session_id, user_id)
    except ResolutionError as e:
        raise _to_http_error(e) from e
    return [MessageResponse.from_domain(message) for message in messages]
