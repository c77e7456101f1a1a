"""
LiteLLM adapter for LLMInvokerPort.

Streams through ``litellm.acompletion(stream=True)``, forwarding text deltas
as they arrive and assembling tool-call fragments into complete requests
that are emitted after the text, followed by one COMPLETED chunk carrying
token usage.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from dialogue_engine.domain.exceptions import ModelInvocationError
from dialogue_engine.domain.ports.llm_invoker_port import (
    LLMInvocationRequest,
    LLMInvocationResult,
    LLMInvokerPort,
    StreamChunk,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)


class LiteLLMInvoker(LLMInvokerPort):
    """LLM invoker backed by LiteLLM's unified completion API."""

    def __init__(self, timeout: Optional[int] = None) -> None:
        self._timeout = timeout

    def _build_completion_kwargs(self, request: LLMInvocationRequest, stream: bool) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": request.model,
            "messages": request.messages,
            "temperature": request.temperature,
            "stream": stream,
        }
        if stream:
            kwargs["stream_options"] = {"include_usage": True}
        if request.tools:
            kwargs["tools"] = request.tools
        if request.max_tokens:
            kwargs["max_tokens"] = request.max_tokens
        if request.api_key:
            kwargs["api_key"] = request.api_key
        if request.api_base:
            kwargs["api_base"] = request.api_base
        if self._timeout:
            kwargs["timeout"] = self._timeout
        return kwargs

    async def invoke_stream(self, request: LLMInvocationRequest) -> AsyncIterator[StreamChunk]:
        import litellm

        try:
            response = await litellm.acompletion(**self._build_completion_kwargs(request, True))
        except Exception as e:
            logger.error(f"[LiteLLM] Stream request to {request.model} failed: {e}")
            raise ModelInvocationError(f"Model call failed: {e}", original_error=e) from e

        content_parts: List[str] = []
        pending_calls: Dict[int, Dict[str, str]] = {}
        input_tokens = 0
        output_tokens = 0
        finish_reason: Optional[str] = None

        try:
            async for chunk in response:
                usage = getattr(chunk, "usage", None)
                if usage:
                    input_tokens = getattr(usage, "prompt_tokens", 0) or input_tokens
                    output_tokens = getattr(usage, "completion_tokens", 0) or output_tokens

                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if choice.finish_reason:
                    finish_reason = choice.finish_reason

                if getattr(delta, "content", None):
                    content_parts.append(delta.content)
                    yield StreamChunk.text(delta.content)

                for fragment in getattr(delta, "tool_calls", None) or []:
                    self._merge_tool_fragment(pending_calls, fragment)
        except Exception as e:
            logger.error(f"[LiteLLM] Stream from {request.model} broke: {e}")
            raise ModelInvocationError(f"Model stream failed: {e}", original_error=e) from e

        for index in sorted(pending_calls):
            yield StreamChunk.tool(self._to_tool_call(pending_calls[index]))

        yield StreamChunk.completed(
            content="".join(content_parts),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            finish_reason=finish_reason,
        )

    async def invoke(self, request: LLMInvocationRequest) -> LLMInvocationResult:
        import litellm

        try:
            response = await litellm.acompletion(**self._build_completion_kwargs(request, False))
        except Exception as e:
            logger.error(f"[LiteLLM] Request to {request.model} failed: {e}")
            raise ModelInvocationError(f"Model call failed: {e}", original_error=e) from e

        if not response.choices:
            raise ModelInvocationError("No choices in model response")
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMInvocationResult(
            content=choice.message.content or "",
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            finish_reason=choice.finish_reason or "stop",
            model=getattr(response, "model", None),
        )

    @staticmethod
    def _merge_tool_fragment(pending: Dict[int, Dict[str, str]], fragment: Any) -> None:
        index = getattr(fragment, "index", None) or 0
        entry = pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if getattr(fragment, "id", None):
            entry["id"] = fragment.id
        function = getattr(fragment, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                entry["name"] += function.name
            if getattr(function, "arguments", None):
                entry["arguments"] += function.arguments

    @staticmethod
    def _to_tool_call(entry: Dict[str, str]) -> ToolCallRequest:
        raw = entry["arguments"].strip()
        try:
            arguments = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            logger.warning(f"[LiteLLM] Unparseable arguments for tool {entry['name']}: {raw[:200]}")
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {"value": arguments}
        return ToolCallRequest(
            id=entry["id"] or f"call_{entry['name']}",
            name=entry["name"],
            arguments=arguments,
        )
