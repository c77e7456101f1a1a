"""LLM catalog entities: providers, models and per-agent budget configuration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from dialogue_engine.domain.shared_kernel import Entity, ValueObject


class TokenBudgetStrategy(str, Enum):
    """Context-window policy applied to a session's active messages."""

    NONE = "none"
    SLIDING_WINDOW = "sliding_window"
    SUMMARIZE = "summarize"


@dataclass(kw_only=True)
class Provider(Entity):
    """A concrete LLM endpoint (vendor protocol + credentials)."""

    name: str
    protocol: str = "openai"  # litellm provider prefix: openai, anthropic, gemini, ...
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    is_active: bool = True


@dataclass(kw_only=True)
class LLMModel(Entity):
    """A model offered by a provider."""

    provider_id: str
    model_name: str
    display_name: str = ""
    is_active: bool = True


@dataclass
class TokenBudgetConfig:
    """Token budget settings for a session's prompt history."""

    strategy: TokenBudgetStrategy = TokenBudgetStrategy.NONE
    max_tokens: int = 4000
    summary_threshold: int = 3000
    reserve_ratio: float = 0.0

    def __post_init__(self):
        """Validate configuration."""
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.summary_threshold <= 0:
            raise ValueError(f"summary_threshold must be positive, got {self.summary_threshold}")
        if not 0.0 <= self.reserve_ratio < 1.0:
            raise ValueError(f"reserve_ratio must be in [0, 1), got {self.reserve_ratio}")

    @property
    def retain_budget(self) -> int:
        """Tokens the retained (unsummarized) messages may occupy."""
        return int(self.max_tokens * (1.0 - self.reserve_ratio))


@dataclass(kw_only=True)
class WorkspaceModelConfig:
    """Model binding of an agent inside a user's workspace."""

    agent_id: str
    user_id: str
    model_id: Optional[str] = None
    budget: TokenBudgetConfig = field(default_factory=TokenBudgetConfig)


@dataclass(kw_only=True)
class UserSettings:
    """Per-user model defaults and failover chain."""

    user_id: str
    default_model_id: Optional[str] = None
    fallback_model_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProviderSelection(ValueObject):
    """Provider/model pair actually called for a turn."""

    provider: Provider
    model: LLMModel
    instance_id: Optional[str] = None
    is_fallback: bool = False

    @property
    def qualified_model_name(self) -> str:
        if "/" in self.model.model_name:
            return self.model.model_name
        return f"{self.provider.protocol}/{self.model.model_name}"
