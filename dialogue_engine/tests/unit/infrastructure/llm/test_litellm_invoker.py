"""
Unit tests for the LiteLLM invoker adapter.

``litellm.acompletion`` is patched; streamed responses are async iterators
over SimpleNamespace chunks shaped like LiteLLM's ModelResponseStream.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from dialogue_engine.domain.exceptions import ModelInvocationError
from dialogue_engine.domain.ports.llm_invoker_port import LLMInvocationRequest, StreamEventType
from dialogue_engine.infrastructure.llm.litellm_invoker import LiteLLMInvoker


class FakeStream:
    def __init__(self, chunks, error=None):
        self._chunks = list(chunks)
        self._error = error

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._chunks:
            return self._chunks.pop(0)
        if self._error is not None:
            error, self._error = self._error, None
            raise error
        raise StopAsyncIteration


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=delta, finish_reason=finish_reason)], usage=usage
    )


def _fragment(index, id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments)
    )


def _request(**overrides):
    values = dict(
        messages=[{"role": "user", "content": "hi"}],
        model="openai/gpt-4o-mini",
        api_key="sk-test",
    )
    values.update(overrides)
    return LLMInvocationRequest(**values)


async def _collect(invoker, request):
    return [chunk async for chunk in invoker.invoke_stream(request)]


@pytest.mark.unit
class TestLiteLLMInvokerStream:
    async def test_text_deltas_then_completed_with_usage(self):
        stream = FakeStream(
            [
                _chunk(content="Hel"),
                _chunk(content="lo", finish_reason="stop"),
                SimpleNamespace(
                    choices=[], usage=SimpleNamespace(prompt_tokens=21, completion_tokens=2)
                ),
            ]
        )
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = stream
            chunks = await _collect(LiteLLMInvoker(timeout=30), _request())

        assert [c.event_type for c in chunks] == [
            StreamEventType.CONTENT,
            StreamEventType.CONTENT,
            StreamEventType.COMPLETED,
        ]
        completed = chunks[-1]
        assert completed.content == "Hello"
        assert completed.input_tokens == 21
        assert completed.output_tokens == 2
        assert completed.finish_reason == "stop"

        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["timeout"] == 30
        assert "tools" not in kwargs

    async def test_tool_fragments_are_merged(self):
        stream = FakeStream(
            [
                _chunk(tool_calls=[_fragment(0, id="call_1", name="echo", arguments='{"te')]),
                _chunk(tool_calls=[_fragment(0, arguments='xt": "hi"}')]),
                _chunk(tool_calls=[_fragment(1, id="call_2", name="lookup", arguments="{}")]),
                _chunk(finish_reason="tool_calls"),
            ]
        )
        tools = [{"type": "function", "function": {"name": "echo"}}]
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = stream
            chunks = await _collect(LiteLLMInvoker(), _request(tools=tools))

        calls = [c.tool_call for c in chunks if c.event_type == StreamEventType.TOOL_CALL]
        assert [(c.id, c.name, c.arguments) for c in calls] == [
            ("call_1", "echo", {"text": "hi"}),
            ("call_2", "lookup", {}),
        ]
        assert chunks[-1].event_type == StreamEventType.COMPLETED
        assert chunks[-1].finish_reason == "tool_calls"
        assert mock_acompletion.call_args.kwargs["tools"] == tools

    async def test_unparseable_arguments_become_empty(self):
        stream = FakeStream([_chunk(tool_calls=[_fragment(0, id="c", name="echo", arguments="{oops")])])
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = stream
            chunks = await _collect(LiteLLMInvoker(), _request())

        assert chunks[0].tool_call.arguments == {}

    async def test_request_failure_raises(self):
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.side_effect = RuntimeError("connection refused")
            with pytest.raises(ModelInvocationError) as exc_info:
                await _collect(LiteLLMInvoker(), _request())

        assert isinstance(exc_info.value.original_error, RuntimeError)

    async def test_broken_stream_raises(self):
        stream = FakeStream([_chunk(content="partial")], error=RuntimeError("reset by peer"))
        received = []
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = stream
            with pytest.raises(ModelInvocationError):
                async for chunk in LiteLLMInvoker().invoke_stream(_request()):
                    received.append(chunk)

        assert [c.content for c in received] == ["partial"]


@pytest.mark.unit
class TestLiteLLMInvokerSingleShot:
    async def test_invoke_returns_content_and_usage(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Summary."), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=50, completion_tokens=4),
            model="gpt-4o-mini",
        )
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = response
            result = await LiteLLMInvoker().invoke(_request(max_tokens=100))

        assert result.content == "Summary."
        assert result.total_tokens == 54
        assert mock_acompletion.call_args.kwargs["stream"] is False
        assert mock_acompletion.call_args.kwargs["max_tokens"] == 100

    async def test_invoke_without_choices(self):
        with patch("litellm.acompletion", new_callable=AsyncMock) as mock_acompletion:
            mock_acompletion.return_value = SimpleNamespace(choices=[], usage=None)
            with pytest.raises(ModelInvocationError):
                await LiteLLMInvoker().invoke(_request())
