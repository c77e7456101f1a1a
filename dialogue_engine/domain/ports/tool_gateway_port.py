"""Remote tool collaborator port."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List

from dialogue_engine.domain.model.agent import Agent

if TYPE_CHECKING:
    from dialogue_engine.infrastructure.agent.tools.base import AgentTool


class ToolGatewayPort(ABC):
    """
    Resolves an agent's declared tool identifiers into remote tool servers
    and loads the invocable tool surface of each server.

    Tool failures surface as string results, never as exceptions crossing
    into the orchestrator.
    """

    @abstractmethod
    async def resolve_servers(self, tool_ids: List[str], user_id: str) -> List[str]:
        """Map declared tool ids to installed server names; unknown ids are dropped."""

    @abstractmethod
    async def load_tools(self, server_name: str, user_id: str, agent: Agent) -> List["AgentTool"]:
        """Return the tools exposed by one server."""
