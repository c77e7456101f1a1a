"""
In-process lookup repositories.

Sessions, agents, the model catalog, workspace bindings and user defaults
are owned by external collaborators. These implementations hold them in
memory, keyed by id, and hand out copies so a turn never mutates the
stored entities.
"""

import copy
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from dialogue_engine.domain.model.agent import Agent, AgentVersion
from dialogue_engine.domain.model.conversation import Session
from dialogue_engine.domain.model.llm import (
    LLMModel,
    Provider,
    UserSettings,
    WorkspaceModelConfig,
)
from dialogue_engine.domain.ports.repositories import (
    AgentRepository,
    LLMCatalogRepository,
    SessionRepository,
    UserSettingsRepository,
    WorkspaceRepository,
)

logger = logging.getLogger(__name__)


class InMemorySessionRepository(SessionRepository):
    def __init__(self, sessions: Iterable[Session] = ()) -> None:
        self._sessions: Dict[str, Session] = {s.id: s for s in sessions}

    def add(self, session: Session) -> Session:
        self._sessions[session.id] = session
        return session

    async def find_by_id(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None


class InMemoryAgentRepository(AgentRepository):
    def __init__(self) -> None:
        self._agents: Dict[str, Agent] = {}
        self._versions: Dict[str, List[AgentVersion]] = {}

    def add(self, agent: Agent) -> Agent:
        self._agents[agent.id] = agent
        return agent

    def publish(self, version: AgentVersion) -> AgentVersion:
        """Record a published snapshot; the last published one is the latest."""
        self._versions.setdefault(version.agent_id, []).append(version)
        logger.debug(f"[AgentRepository] Published {version.agent_id} v{version.version_number}")
        return version

    async def find_by_id(self, agent_id: str) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        return copy.deepcopy(agent) if agent else None

    async def find_latest_version(self, agent_id: str) -> Optional[AgentVersion]:
        versions = self._versions.get(agent_id)
        if not versions:
            return None
        return copy.deepcopy(max(versions, key=lambda v: v.published_at))


class InMemoryLLMCatalogRepository(LLMCatalogRepository):
    def __init__(self) -> None:
        self._models: Dict[str, LLMModel] = {}
        self._providers: Dict[str, Provider] = {}

    def add_provider(self, provider: Provider) -> Provider:
        self._providers[provider.id] = provider
        return provider

    def add_model(self, model: LLMModel) -> LLMModel:
        self._models[model.id] = model
        return model

    async def find_model(self, model_id: str) -> Optional[LLMModel]:
        model = self._models.get(model_id)
        return copy.deepcopy(model) if model else None

    async def find_provider(self, provider_id: str) -> Optional[Provider]:
        provider = self._providers.get(provider_id)
        return copy.deepcopy(provider) if provider else None


class InMemoryWorkspaceRepository(WorkspaceRepository):
    def __init__(self) -> None:
        self._configs: Dict[Tuple[str, str], WorkspaceModelConfig] = {}

    def add(self, config: WorkspaceModelConfig) -> WorkspaceModelConfig:
        self._configs[(config.agent_id, config.user_id)] = config
        return config

    async def find_model_config(self, agent_id: str, user_id: str) -> Optional[WorkspaceModelConfig]:
        config = self._configs.get((agent_id, user_id))
        return copy.deepcopy(config) if config else None


class InMemoryUserSettingsRepository(UserSettingsRepository):
    def __init__(self) -> None:
        self._settings: Dict[str, UserSettings] = {}

    def add(self, settings: UserSettings) -> UserSettings:
        self._settings[settings.user_id] = settings
        return settings

    async def find_by_user(self, user_id: str) -> Optional[UserSettings]:
        settings = self._settings.get(user_id)
        return copy.deepcopy(settings) if settings else None
