"""
LLM Invoker Port - Domain interface for LLM invocation.

Defines the contract for invoking LLM providers with streaming support.
Infrastructure adapters (LiteLLM, ...) implement this interface.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable


class StreamEventType(str, Enum):
    """Closed set of events a model stream can produce."""

    CONTENT = "content"  # partial text delta
    TOOL_CALL = "tool_call"  # complete tool call request
    COMPLETED = "completed"  # final response with usage
    ERROR = "error"  # provider reported an error


@dataclass
class ToolCallRequest:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


@dataclass
class StreamChunk:
    """A chunk from an LLM streaming response.

    Attributes:
        event_type: Type of stream event
        content: Text delta (CONTENT) or full text (COMPLETED)
        tool_call: Tool call request (TOOL_CALL)
        input_tokens: Prompt tokens reported on COMPLETED
        output_tokens: Completion tokens reported on COMPLETED
        finish_reason: Provider finish reason (COMPLETED)
        error: Error message (ERROR)
    """

    event_type: StreamEventType
    content: Optional[str] = None
    tool_call: Optional[ToolCallRequest] = None
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def text(cls, delta: str) -> StreamChunk:
        return cls(StreamEventType.CONTENT, content=delta)

    @classmethod
    def tool(cls, tool_call: ToolCallRequest) -> StreamChunk:
        return cls(StreamEventType.TOOL_CALL, tool_call=tool_call)

    @classmethod
    def completed(
        cls,
        content: str = "",
        input_tokens: int = 0,
        output_tokens: int = 0,
        finish_reason: Optional[str] = "stop",
    ) -> StreamChunk:
        return cls(
            StreamEventType.COMPLETED,
            content=content,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            finish_reason=finish_reason,
        )

    @classmethod
    def failed(cls, error: str) -> StreamChunk:
        return cls(StreamEventType.ERROR, error=error)


@dataclass
class LLMInvocationRequest:
    """Request for LLM invocation.

    Attributes:
        messages: Conversation messages in OpenAI chat format
        tools: Available tools in OpenAI format
        model: Provider-qualified model name
        api_key: Provider credential
        api_base: Provider base URL override
        temperature: Sampling temperature
        max_tokens: Maximum tokens to generate
        metadata: Additional provider-specific metadata
    """

    messages: List[Dict[str, Any]]
    tools: Optional[List[Dict[str, Any]]] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMInvocationResult:
    """Result from non-streaming LLM invocation."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = "stop"
    model: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@runtime_checkable
class LLMInvokerPort(Protocol):
    """
    Protocol for LLM invocation.

    ``invoke_stream`` yields CONTENT deltas, then any TOOL_CALL requests,
    then exactly one COMPLETED chunk. Failures are raised as
    ``ModelInvocationError`` or reported as an ERROR chunk.
    """

    def invoke_stream(self, request: LLMInvocationRequest) -> AsyncIterator[StreamChunk]:
        ...

    async def invoke(self, request: LLMInvocationRequest) -> LLMInvocationResult:
        ...
