"""
Conversation-engine domain exceptions.

Exception Hierarchy:
    DomainException
    ├── ResolutionError          - raised before any streaming starts
    │   ├── NotFoundError        - session/agent/model/provider missing
    │   └── DisabledError        - agent/model/provider administratively inactive
    ├── ModelInvocationError     - model call failed mid-turn
    │   └── StreamTimeoutError   - connection lifetime exceeded
    └── ToolExecutionError       - tool failed; converted to a text result

Usage:
    from dialogue_engine.domain.exceptions import NotFoundError

    agent = await agent_repository.find_by_id(agent_id)
    if agent is None:
        raise NotFoundError("Agent", agent_id)
"""

from typing import Any, Optional

from dialogue_engine.domain.shared_kernel import DomainException


class ResolutionError(DomainException):
    """Base class for errors raised while assembling a turn context."""

    def __init__(self, entity_type: str, entity_id: Optional[str], message: str) -> None:
        super().__init__(message)
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(ResolutionError):
    """A referenced session, agent, model or provider does not exist."""

    def __init__(self, entity_type: str, entity_id: Optional[str]) -> None:
        super().__init__(entity_type, entity_id, f"{entity_type} not found: {entity_id}")


class DisabledError(ResolutionError):
    """A referenced agent, model or provider is administratively inactive."""

    def __init__(self, entity_type: str, entity_id: Optional[str]) -> None:
        super().__init__(entity_type, entity_id, f"{entity_type} is disabled: {entity_id}")


class ModelInvocationError(DomainException):
    """
    The model call failed while a turn was running.

    Fatal to the current turn only.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.details = details or {}

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by: {self.original_error})"
        return self.message


class StreamTimeoutError(ModelInvocationError):
    """The output connection outlived its maximum lifetime."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Stream timed out after {timeout_seconds:.0f}s",
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class ToolExecutionError(DomainException):
    """Raised by a tool; reported back to the model as text."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.message = message
