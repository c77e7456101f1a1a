from dialogue_engine.infrastructure.adapters.secondary.persistence.database import (
    create_engine,
    create_session_factory,
    initialize_database,
)
from dialogue_engine.infrastructure.adapters.secondary.persistence.in_memory_catalog import (
    InMemoryAgentRepository,
    InMemoryLLMCatalogRepository,
    InMemorySessionRepository,
    InMemoryUserSettingsRepository,
    InMemoryWorkspaceRepository,
)
from dialogue_engine.infrastructure.adapters.secondary.persistence.sql_message_repository import (
    SqlMessageRepository,
)

__all__ = [
    "create_engine",
    "create_session_factory",
    "initialize_database",
    "InMemoryAgentRepository",
    "InMemoryLLMCatalogRepository",
    "InMemorySessionRepository",
    "InMemoryUserSettingsRepository",
    "InMemoryWorkspaceRepository",
    "SqlMessageRepository",
]
