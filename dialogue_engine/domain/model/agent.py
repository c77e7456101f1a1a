"""Agent entity and its published (installed) snapshot."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List

from dialogue_engine.domain.shared_kernel import Entity

# server name -> tool name -> parameter name -> value
PresetToolParams = Dict[str, Dict[str, Dict[str, str]]]


@dataclass(kw_only=True)
class Agent(Entity):
    """
    A configurable agent: system prompt, bound remote tools and linked sub-agents.

    Agents are loaded by an external collaborator and treated as immutable
    for the duration of a turn.
    """

    owner_id: str
    name: str = ""
    description: str = ""
    system_prompt: str = ""
    tool_preset_params: PresetToolParams = field(default_factory=dict)
    tool_ids: List[str] = field(default_factory=list)
    linked_agent_ids: List[str] = field(default_factory=list)
    enabled: bool = True

    def is_owned_by(self, user_id: str) -> bool:
        return self.owner_id == user_id

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(kw_only=True)
class AgentVersion(Entity):
    """A published, immutable snapshot of an agent as installed by other users."""

    agent_id: str
    version_number: str
    name: str = ""
    description: str = ""
    system_prompt: str = ""
    tool_preset_params: PresetToolParams = field(default_factory=dict)
    tool_ids: List[str] = field(default_factory=list)
    linked_agent_ids: List[str] = field(default_factory=list)
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def apply_to(self, agent: Agent) -> Agent:
        """Return a copy of the live agent carrying this snapshot's configuration."""
        return replace(
            agent,
            name=self.name or agent.name,
            description=self.description,
            system_prompt=self.system_prompt,
            tool_preset_params=dict(self.tool_preset_params),
            tool_ids=list(self.tool_ids),
            linked_agent_ids=list(self.linked_agent_ids),
        )
