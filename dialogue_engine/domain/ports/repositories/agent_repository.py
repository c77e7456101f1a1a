"""Read ports for sessions and agents (owned by external collaborators)."""

from abc import ABC, abstractmethod
from typing import Optional

from dialogue_engine.domain.model.agent import Agent, AgentVersion
from dialogue_engine.domain.model.conversation import Session


class SessionRepository(ABC):
    @abstractmethod
    async def find_by_id(self, session_id: str) -> Optional[Session]:
        pass


class AgentRepository(ABC):
    @abstractmethod
    async def find_by_id(self, agent_id: str) -> Optional[Agent]:
        pass

    @abstractmethod
    async def find_latest_version(self, agent_id: str) -> Optional[AgentVersion]:
        """Latest published snapshot of the agent, if any."""
        pass
