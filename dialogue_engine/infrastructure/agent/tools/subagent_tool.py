"""Sub-agent tools: call a linked agent inside the same session.

One SubAgentTool is generated per enabled linked sub-agent. Invoking it runs
a full single-shot turn for the target agent (persistence suppressed) and
returns that turn's final text as the tool result.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Dict, List, Optional

from dialogue_engine.application.services.stream_session_registry import StreamSessionRegistry
from dialogue_engine.application.services.token_budget_manager import estimate_tokens
from dialogue_engine.domain.model.agent import Agent
from dialogue_engine.domain.model.conversation import Message, MessageRole, MessageType
from dialogue_engine.domain.model.stream import ChatEvent
from dialogue_engine.domain.model.turn import ChatRequest, TurnContext
from dialogue_engine.domain.ports.repositories import AgentRepository, MessageRepository
from dialogue_engine.infrastructure.agent.tools.base import AgentTool

logger = logging.getLogger(__name__)

TOOL_NAME_PREFIX = "call_"
NO_OUTPUT = "(no output)"
_MAX_TOOL_NAME_LENGTH = 64

# (request, user_id, target_agent_id, delegation_depth) -> final assistant text
DelegateCallback = Callable[[ChatRequest, str, str, int], Awaitable[str]]


def subagent_tool_name(agent: Agent, suffix: Optional[str] = None) -> str:
    """Deterministic function name for a sub-agent: call_<name or id>."""
    slug = re.sub(r"[^a-zA-Z0-9_-]+", "_", agent.name or "").strip("_").lower()
    if not slug:
        slug = re.sub(r"[^a-zA-Z0-9_-]+", "_", agent.id)
    if suffix:
        slug = f"{slug}_{suffix}"
    return f"{TOOL_NAME_PREFIX}{slug}"[:_MAX_TOOL_NAME_LENGTH]


class SubAgentTool(AgentTool):
    """Tool that forwards a message to one linked sub-agent."""

    def __init__(
        self,
        target: Agent,
        execute_callback: DelegateCallback,
        message_repository: MessageRepository,
        registry: StreamSessionRegistry,
        name_suffix: Optional[str] = None,
    ) -> None:
        description = target.description or f"Ask the '{target.display_name}' agent."
        super().__init__(
            name=subagent_tool_name(target, name_suffix),
            description=(
                f"Delegate to sub-agent '{target.display_name}': {description} "
                "Pass the full request in 'message'; the agent's final answer is returned."
            ),
        )
        self._target = target
        self._execute_fn = execute_callback
        self._messages = message_repository
        self._registry = registry

    @property
    def target_agent_id(self) -> str:
        return self._target.id

    def get_parameters_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": (
                        "Message to send to the sub-agent. Include all context it needs."
                    ),
                },
            },
            "required": ["message"],
        }

    async def execute(self, turn: TurnContext, /, message: str = "", **kwargs: Any) -> str:
        if not message or not message.strip():
            return "Error: 'message' is required"

        # keep the generic "tool invoked" marker off the parent timeline
        turn.suppress_tool(self.name)
        await self._persist_start_marker(turn, message)
        await self._registry.send(
            turn.session_id, ChatEvent.sub_agent_call_started(self._target.display_name)
        )

        logger.info(
            f"[Delegation] {turn.agent.display_name} -> {self._target.display_name} "
            f"(session {turn.session_id}, depth {turn.delegation_depth + 1}): {message[:100]}"
        )
        try:
            result = await self._execute_fn(
                ChatRequest(session_id=turn.session_id, message=message),
                turn.user_id,
                self._target.id,
                turn.delegation_depth + 1,
            )
        except Exception as e:
            logger.warning(
                f"[Delegation] Sub-agent {self._target.display_name} failed: {e}", exc_info=True
            )
            await self._registry.send(
                turn.session_id,
                ChatEvent.sub_agent_call_error(f"{self._target.display_name}: {e}"),
            )
            return self._format_error(e)

        await self._registry.send(
            turn.session_id, ChatEvent.sub_agent_call_complete(self._target.display_name)
        )
        return result if result else NO_OUTPUT

    async def _persist_start_marker(self, turn: TurnContext, message: str) -> None:
        if turn.suppress_persistence:
            return
        content = f"Sub-agent call: {self._target.display_name}"
        marker = Message(
            session_id=turn.session_id,
            role=MessageRole.ASSISTANT,
            content=content,
            message_type=MessageType.SUB_AGENT_CALL_START,
            body_token_count=estimate_tokens(content),
            token_count=estimate_tokens(content),
            metadata={
                "tool_name": self.name,
                "agent_id": self._target.id,
                "message": message,
            },
        )
        await self._messages.save_and_activate([marker], turn.conversation_context)

    def _format_error(self, error: Exception) -> str:
        return f"Error: sub-agent '{self._target.display_name}' failed: {error}"


class SubAgentToolFactory:
    """Builds the sub-agent tools of an agent from its linked agent ids."""

    def __init__(
        self,
        agent_repository: AgentRepository,
        message_repository: MessageRepository,
        registry: StreamSessionRegistry,
        execute_callback: DelegateCallback,
    ) -> None:
        self._agents = agent_repository
        self._messages = message_repository
        self._registry = registry
        self._execute_fn = execute_callback

    async def build_tools(self, agent: Agent) -> List[SubAgentTool]:
        """One tool per enabled linked agent; missing or disabled ones are skipped."""
        tools: List[SubAgentTool] = []
        names: set[str] = set()
        for agent_id in dict.fromkeys(agent.linked_agent_ids):
            if agent_id == agent.id:
                continue
            target = await self._agents.find_by_id(agent_id)
            if target is None or not target.enabled:
                logger.debug(f"[Delegation] Skipping unavailable sub-agent {agent_id}")
                continue
            tool = SubAgentTool(target, self._execute_fn, self._messages, self._registry)
            if tool.name in names:
                tool = SubAgentTool(
                    target,
                    self._execute_fn,
                    self._messages,
                    self._registry,
                    name_suffix=target.id[:8],
                )
            names.add(tool.name)
            tools.append(tool)
        return tools
