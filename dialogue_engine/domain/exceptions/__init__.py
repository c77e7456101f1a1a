"""
Domain exceptions for the conversation engine.
"""

from dialogue_engine.domain.exceptions.conversation_exceptions import (
    DisabledError,
    ModelInvocationError,
    NotFoundError,
    ResolutionError,
    StreamTimeoutError,
    ToolExecutionError,
)

__all__ = [
    "ResolutionError",
    "NotFoundError",
    "DisabledError",
    "ModelInvocationError",
    "StreamTimeoutError",
    "ToolExecutionError",
]
