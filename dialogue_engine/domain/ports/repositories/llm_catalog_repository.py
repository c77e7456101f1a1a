"""Read ports for models, providers, workspace bindings and user defaults."""

from abc import ABC, abstractmethod
from typing import Optional

from dialogue_engine.domain.model.llm import (
    LLMModel,
    Provider,
    UserSettings,
    WorkspaceModelConfig,
)


class LLMCatalogRepository(ABC):
    @abstractmethod
    async def find_model(self, model_id: str) -> Optional[LLMModel]:
        pass

    @abstractmethod
    async def find_provider(self, provider_id: str) -> Optional[Provider]:
        pass


class WorkspaceRepository(ABC):
    @abstractmethod
    async def find_model_config(self, agent_id: str, user_id: str) -> Optional[WorkspaceModelConfig]:
        pass


class UserSettingsRepository(ABC):
    @abstractmethod
    async def find_by_user(self, user_id: str) -> Optional[UserSettings]:
        pass
