"""Tool provisioning per turn kind."""

import logging
from typing import Awaitable, Callable, Dict, List

from dialogue_engine.domain.model.turn import TurnContext, TurnKind
from dialogue_engine.domain.ports.tool_gateway_port import ToolGatewayPort
from dialogue_engine.infrastructure.agent.tools.base import AgentTool
from dialogue_engine.infrastructure.agent.tools.subagent_tool import SubAgentToolFactory

logger = logging.getLogger(__name__)


class ToolProvisioner:
    """Builds the tools bound to a turn from a TurnKind -> builder table."""

    def __init__(
        self,
        tool_gateway: ToolGatewayPort,
        subagent_factory: SubAgentToolFactory,
        max_delegation_depth: int = 1,
    ) -> None:
        self._gateway = tool_gateway
        self._subagents = subagent_factory
        self._max_delegation_depth = max_delegation_depth
        self._builders: Dict[TurnKind, Callable[[TurnContext], Awaitable[List[AgentTool]]]] = {
            TurnKind.STANDARD: self._standard_tools,
            TurnKind.AGENT: self._agent_tools,
        }

    async def provision(self, turn: TurnContext) -> Dict[str, AgentTool]:
        tools = await self._builders[turn.kind](turn)
        bound: Dict[str, AgentTool] = {}
        for tool in tools:
            if tool.name in bound:
                logger.warning(f"[Tools] Duplicate tool name {tool.name}; keeping the first")
                continue
            bound[tool.name] = tool
        return bound

    async def _standard_tools(self, turn: TurnContext) -> List[AgentTool]:
        return []

    async def _agent_tools(self, turn: TurnContext) -> List[AgentTool]:
        tools: List[AgentTool] = []
        for server_name in turn.tool_ids:
            tools.extend(await self._gateway.load_tools(server_name, turn.user_id, turn.agent))
        if turn.delegation_depth < self._max_delegation_depth:
            tools.extend(await self._subagents.build_tools(turn.agent))
        return tools
