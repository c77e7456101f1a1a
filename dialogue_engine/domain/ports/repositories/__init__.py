from dialogue_engine.domain.ports.repositories.agent_repository import (
    AgentRepository,
    SessionRepository,
)
from dialogue_engine.domain.ports.repositories.llm_catalog_repository import (
    LLMCatalogRepository,
    UserSettingsRepository,
    WorkspaceRepository,
)
from dialogue_engine.domain.ports.repositories.message_repository import MessageRepository

__all__ = [
    "AgentRepository",
    "SessionRepository",
    "LLMCatalogRepository",
    "UserSettingsRepository",
    "WorkspaceRepository",
    "MessageRepository",
]
