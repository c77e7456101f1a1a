"""
Streaming Orchestrator - runs one turn as an explicit state machine.

    INIT -> STREAMING -> (TOOL_PAUSE <-> STREAMING)* -> COMPLETE | FAILED

All handlers of a turn run on the turn's own task and share one
TurnExecution, so model events are processed strictly in arrival order.
Persisted messages follow causal order: user, flushed text, tool markers,
final assistant message. Every persisted message is appended to the
session's active message list as it is written.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from dialogue_engine.application.services.prompt_builder import PromptBuilder
from dialogue_engine.application.services.stream_session_registry import StreamSessionRegistry
from dialogue_engine.application.services.token_budget_manager import estimate_tokens
from dialogue_engine.domain.exceptions import ModelInvocationError, StreamTimeoutError
from dialogue_engine.domain.model.conversation import Message, MessageRole, MessageType
from dialogue_engine.domain.model.stream import ChatEvent, StreamState
from dialogue_engine.domain.model.turn import TurnContext
from dialogue_engine.domain.ports.llm_invoker_port import (
    LLMInvocationRequest,
    LLMInvokerPort,
    StreamChunk,
    StreamEventType,
    ToolCallRequest,
)
from dialogue_engine.domain.ports.provider_selector_port import ProviderSelectorPort
from dialogue_engine.domain.ports.repositories import MessageRepository
from dialogue_engine.domain.ports.transport_port import MessageTransport, OutputConnection
from dialogue_engine.infrastructure.agent.tools.base import AgentTool
from dialogue_engine.infrastructure.agent.tools.provisioner import ToolProvisioner

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    """States of a turn."""

    INIT = "init"
    STREAMING = "streaming"
    TOOL_PAUSE = "tool_pause"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: Dict[TurnState, set] = {
    TurnState.INIT: {TurnState.STREAMING, TurnState.FAILED},
    TurnState.STREAMING: {TurnState.TOOL_PAUSE, TurnState.COMPLETE, TurnState.FAILED},
    TurnState.TOOL_PAUSE: {TurnState.STREAMING, TurnState.FAILED},
    TurnState.COMPLETE: set(),
    TurnState.FAILED: set(),
}


class TurnStateError(RuntimeError):
    """Illegal state machine transition."""


class TurnExecution:
    """Mutable per-turn state shared by every handler of one turn."""

    def __init__(
        self,
        turn: TurnContext,
        transport: MessageTransport,
        connection: OutputConnection,
        stream_state: Optional[StreamState] = None,
    ) -> None:
        self.turn = turn
        self.transport = transport
        self.connection = connection
        self.stream_state = stream_state
        self.state = TurnState.INIT
        self.tools: Dict[str, AgentTool] = {}
        self.prompt: List[Dict[str, Any]] = []
        self.user_message: Optional[Message] = None
        self.assistant_shell: Optional[Message] = None
        self.persisted: List[Message] = []
        self.final_text = ""
        self.error: Optional[BaseException] = None
        self.input_tokens = 0
        self.output_tokens = 0
        self.tool_rounds = 0
        self.slot_claimed = False
        self._text: List[str] = []
        self._last_created_at: Optional[datetime] = None

    def transition(self, new_state: TurnState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise TurnStateError(f"Illegal turn transition {self.state.value} -> {new_state.value}")
        logger.debug(
            f"[Orchestrator] Turn {self.turn.turn_id[:8]}: {self.state.value} -> {new_state.value}"
        )
        self.state = new_state

    @property
    def is_live(self) -> bool:
        """False once a newer stream for the session interrupted this one."""
        return self.stream_state is None or self.stream_state.is_active

    @property
    def is_finished(self) -> bool:
        return self.state in (TurnState.COMPLETE, TurnState.FAILED)

    def append_text(self, delta: str) -> None:
        self._text.append(delta)
        if self.stream_state is not None:
            self.stream_state.append_partial(delta)

    def take_text(self) -> str:
        text = "".join(self._text)
        self._text.clear()
        return text

    def stamp(self, message: Message) -> None:
        """Keep creation times strictly increasing within the turn."""
        if self._last_created_at is not None and message.created_at <= self._last_created_at:
            message.created_at = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = message.created_at

    async def send(self, event: ChatEvent) -> None:
        if self.is_live:
            await self.transport.send_message(self.connection, event)


async def _next_or_none(stream: AsyncIterator[StreamChunk]) -> Optional[StreamChunk]:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


class StreamingOrchestrator:
    """
    Drives the model for one TurnContext, interleaving tool execution and
    persistence, and reports everything to a transport.

    Usage:
        execution = await orchestrator.execute(turn, transport, connection, stream_state)
    """

    def __init__(
        self,
        llm_invoker: LLMInvokerPort,
        message_repository: MessageRepository,
        tool_provisioner: ToolProvisioner,
        registry: StreamSessionRegistry,
        prompt_builder: Optional[PromptBuilder] = None,
        provider_selector: Optional[ProviderSelectorPort] = None,
        max_tool_rounds: int = 20,
        temperature: float = 0.7,
        tool_result_preview_chars: int = 2000,
    ) -> None:
        self._llm = llm_invoker
        self._messages = message_repository
        self._tools = tool_provisioner
        self._registry = registry
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._selector = provider_selector
        self._max_tool_rounds = max_tool_rounds
        self._temperature = temperature
        self._preview_chars = tool_result_preview_chars

    async def execute(
        self,
        turn: TurnContext,
        transport: MessageTransport,
        connection: OutputConnection,
        stream_state: Optional[StreamState] = None,
    ) -> TurnExecution:
        """Run the turn to COMPLETE or FAILED; never raises for model or tool errors."""
        execution = TurnExecution(turn, transport, connection, stream_state)
        logger.info(
            f"[Orchestrator] Turn {turn.turn_id[:8]} started: session={turn.session_id} "
            f"agent={turn.agent.display_name} streaming={turn.streaming} "
            f"suppress_persistence={turn.suppress_persistence}"
        )
        try:
            await self._initialize(execution)
            await self._run(execution)
        except asyncio.TimeoutError:
            await self._fail(execution, StreamTimeoutError(connection.timeout), provider_fault=True)
        except ModelInvocationError as e:
            await self._fail(execution, e, provider_fault=True)
        except asyncio.CancelledError:
            logger.info(f"[Orchestrator] Turn {turn.turn_id[:8]} cancelled")
            await transport.complete_connection(connection)
            raise
        except Exception as e:
            logger.exception(f"[Orchestrator] Turn {turn.turn_id[:8]} crashed: {e}")
            await self._fail(
                execution,
                ModelInvocationError(f"Turn failed: {e}", original_error=e),
                provider_fault=False,
            )
        finally:
            if execution.slot_claimed:
                self._selector.release(turn.selection)
            if stream_state is not None:
                await self._registry.release(turn.session_id, stream_state)
        return execution

    # === INIT ===

    async def _initialize(self, execution: TurnExecution) -> None:
        turn = execution.turn
        selection = turn.selection
        execution.tools = await self._tools.provision(turn)
        execution.prompt = self._prompt_builder.build(turn)

        if not turn.suppress_persistence:
            tokens = estimate_tokens(turn.message)
            user_message = Message(
                session_id=turn.session_id,
                role=MessageRole.USER,
                content=turn.message,
                file_urls=list(turn.file_urls),
                token_count=tokens,
                body_token_count=tokens,
                provider_id=selection.provider.id,
                model_id=selection.model.id,
            )
            await self._persist(execution, user_message)
            execution.user_message = user_message

        metadata = {}
        if selection.is_fallback:
            metadata = {"declared_provider_id": turn.provider.id, "declared_model_id": turn.model.id}
        execution.assistant_shell = Message(
            session_id=turn.session_id,
            role=MessageRole.ASSISTANT,
            provider_id=selection.provider.id,
            model_id=selection.model.id,
            metadata=metadata,
        )
        execution.transition(TurnState.STREAMING)

    # === STREAMING ===

    async def _run(self, execution: TurnExecution) -> None:
        if self._selector is not None:
            execution.slot_claimed = self._selector.acquire(execution.turn.selection)
        while True:
            outcome = await self._stream_round(execution)
            if outcome is None:
                logger.info(
                    f"[Orchestrator] Turn {execution.turn.turn_id[:8]} interrupted; "
                    "ignoring remaining model output"
                )
                return
            tool_calls, completed = outcome
            execution.input_tokens = completed.input_tokens
            execution.output_tokens = completed.output_tokens

            if not tool_calls:
                await self._complete(execution, completed)
                return

            execution.tool_rounds += 1
            if execution.tool_rounds > self._max_tool_rounds:
                raise ModelInvocationError(
                    f"Exceeded maximum of {self._max_tool_rounds} tool rounds in one turn"
                )
            await self._pause_for_tools(execution, tool_calls)
            if not execution.is_live:
                return

    async def _stream_round(
        self, execution: TurnExecution
    ) -> Optional[Tuple[List[ToolCallRequest], StreamChunk]]:
        stream = self._llm.invoke_stream(self._build_request(execution))
        tool_calls: List[ToolCallRequest] = []
        completed: Optional[StreamChunk] = None
        try:
            while True:
                chunk = await self._next_chunk(execution, stream)
                if chunk is None:
                    break
                if not execution.is_live:
                    return None
                if chunk.event_type == StreamEventType.CONTENT:
                    await self._on_partial_text(execution, chunk.content or "")
                elif chunk.event_type == StreamEventType.TOOL_CALL and chunk.tool_call:
                    tool_calls.append(chunk.tool_call)
                elif chunk.event_type == StreamEventType.COMPLETED:
                    completed = chunk
                elif chunk.event_type == StreamEventType.ERROR:
                    raise ModelInvocationError(chunk.error or "Model stream reported an error")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not execution.is_live:
            return None
        return tool_calls, completed or StreamChunk.completed()

    async def _next_chunk(
        self, execution: TurnExecution, stream: AsyncIterator[StreamChunk]
    ) -> Optional[StreamChunk]:
        remaining = execution.connection.remaining()
        if remaining <= 0:
            raise asyncio.TimeoutError()
        return await asyncio.wait_for(_next_or_none(stream), timeout=remaining)

    async def _on_partial_text(self, execution: TurnExecution, delta: str) -> None:
        if not delta:
            return
        execution.append_text(delta)
        await execution.send(ChatEvent.partial_text(delta))

    def _build_request(self, execution: TurnExecution) -> LLMInvocationRequest:
        selection = execution.turn.selection
        tools = [tool.to_openai_function() for tool in execution.tools.values()]
        return LLMInvocationRequest(
            messages=list(execution.prompt),
            tools=tools or None,
            model=selection.qualified_model_name,
            api_key=selection.provider.api_key,
            api_base=selection.provider.base_url,
            temperature=self._temperature,
            metadata={"session_id": execution.turn.session_id, "turn_id": execution.turn.turn_id},
        )

    # === TOOL_PAUSE ===

    async def _pause_for_tools(
        self, execution: TurnExecution, tool_calls: List[ToolCallRequest]
    ) -> None:
        execution.transition(TurnState.TOOL_PAUSE)
        flushed = await self._flush_text(execution)
        execution.prompt.append(
            {
                "role": "assistant",
                "content": flushed or None,
                "tool_calls": [call.to_openai() for call in tool_calls],
            }
        )
        for call in tool_calls:
            result = await self._run_tool(execution, call)
            execution.prompt.append({"role": "tool", "tool_call_id": call.id, "content": result})
            if not execution.is_live:
                return
        execution.transition(TurnState.STREAMING)

    async def _flush_text(self, execution: TurnExecution) -> str:
        text = execution.take_text()
        if not text:
            return ""
        await execution.send(ChatEvent.end_of_text(text))
        await self._persist(execution, self._assistant_text(execution, text))
        return text

    async def _run_tool(self, execution: TurnExecution, call: ToolCallRequest) -> str:
        tool = execution.tools.get(call.name)
        if tool is None:
            logger.warning(f"[Orchestrator] Model requested unknown tool {call.name}")
            result = f"Error: Unknown tool '{call.name}'"
        else:
            remaining = execution.connection.remaining()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            result = await asyncio.wait_for(
                tool.safe_execute(execution.turn, **call.arguments), timeout=remaining
            )

        if execution.is_live and not execution.turn.is_tool_suppressed(call.name):
            content = f"Executing tool: {call.name}"
            marker = Message(
                session_id=execution.turn.session_id,
                role=MessageRole.ASSISTANT,
                content=content,
                message_type=MessageType.TOOL_CALL,
                token_count=estimate_tokens(content),
                body_token_count=estimate_tokens(content),
                metadata={
                    "tool_name": call.name,
                    "tool_call_id": call.id,
                    "arguments": call.arguments,
                    "result": result[: self._preview_chars],
                },
            )
            await self._persist(execution, marker)
            await execution.send(ChatEvent.tool_invoked(call.name))
        return result

    # === COMPLETE / FAILED ===

    async def _complete(self, execution: TurnExecution, completed: StreamChunk) -> None:
        text = execution.take_text()
        if not text and completed.content:
            # provider delivered the answer without deltas
            text = completed.content
        execution.final_text = text

        shell = execution.assistant_shell
        shell.content = text
        shell.token_count = completed.output_tokens or estimate_tokens(text)
        shell.body_token_count = shell.token_count
        shell.created_at = datetime.now(timezone.utc)

        user_message = execution.user_message
        if user_message is not None and completed.input_tokens:
            user_message.token_count = completed.input_tokens
            await self._messages.update_message(user_message)
        # writes first: a failure here must still reach the caller as an error
        await self._persist(execution, shell)
        execution.transition(TurnState.COMPLETE)

        if execution.is_live:
            if execution.stream_state is not None:
                execution.stream_state.mark_completed()
            await execution.transport.send_end_message(
                execution.connection, ChatEvent.end_of_text(text, done=True)
            )
        self._record_outcome(execution)
        logger.info(
            f"[Orchestrator] Turn {execution.turn.turn_id[:8]} completed: "
            f"tool_rounds={execution.tool_rounds} input_tokens={completed.input_tokens} "
            f"output_tokens={completed.output_tokens}"
        )

    async def _fail(
        self, execution: TurnExecution, error: ModelInvocationError, provider_fault: bool
    ) -> None:
        execution.error = error
        turn_id = execution.turn.turn_id[:8]
        if execution.is_finished:
            logger.error(f"[Orchestrator] Turn {turn_id} errored after {execution.state.value}: {error}")
            return
        execution.transition(TurnState.FAILED)
        if provider_fault:
            self._record_outcome(execution, error)
        if not execution.is_live:
            logger.info(f"[Orchestrator] Interrupted turn {turn_id} failed late: {error}")
            return

        logger.warning(f"[Orchestrator] Turn {turn_id} failed: {error}")
        text = execution.take_text()
        if text:
            # keep what the user already saw
            try:
                await self._persist(execution, self._assistant_text(execution, text))
            except Exception as e:
                logger.exception(f"[Orchestrator] Could not persist partial text of turn {turn_id}: {e}")

        if execution.stream_state is not None:
            execution.stream_state.mark_completed()
        await execution.transport.handle_error(execution.connection, error)

    def _record_outcome(
        self, execution: TurnExecution, error: Optional[BaseException] = None
    ) -> None:
        """Feed the provider's breaker; interrupted or crashed turns report nothing."""
        if self._selector is None:
            return
        if error is None:
            self._selector.record_success(execution.turn.selection)
        else:
            self._selector.record_failure(execution.turn.selection, error)
        execution.slot_claimed = False

    # === persistence ===

    def _assistant_text(self, execution: TurnExecution, text: str) -> Message:
        tokens = estimate_tokens(text)
        shell = execution.assistant_shell
        return Message(
            session_id=execution.turn.session_id,
            role=MessageRole.ASSISTANT,
            content=text,
            token_count=tokens,
            body_token_count=tokens,
            provider_id=shell.provider_id if shell else None,
            model_id=shell.model_id if shell else None,
        )

    async def _persist(self, execution: TurnExecution, message: Message) -> None:
        if execution.turn.suppress_persistence:
            return
        execution.stamp(message)
        await self._messages.save_and_activate([message], execution.turn.conversation_context)
        execution.persisted.append(message)
