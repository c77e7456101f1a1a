"""Configuration management for the dialogue engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dialogue_engine.domain.model.llm import TokenBudgetConfig, TokenBudgetStrategy


class Settings(BaseSettings):
    """Application settings."""

    # API Settings
    app_name: str = Field(default="dialogue-engine", alias="APP_NAME")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s", alias="LOG_FORMAT"
    )

    # Database Settings
    database_url: str = Field(
        default="sqlite+aiosqlite:///./dialogue_engine.db", alias="DATABASE_URL"
    )
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # Streaming Settings
    # Maximum lifetime of an output connection (seconds)
    stream_connection_timeout: float = Field(default=3000.0, alias="STREAM_CONNECTION_TIMEOUT")
    # Extra time an SSE consumer waits past the deadline for the terminal event
    stream_consumer_grace: float = Field(default=5.0, alias="STREAM_CONSUMER_GRACE")
    max_tool_rounds: int = Field(default=20, alias="AGENT_MAX_TOOL_ROUNDS")
    tool_result_preview_chars: int = Field(default=2000, alias="TOOL_RESULT_PREVIEW_CHARS")

    # Delegation Settings
    # 1 = an agent may call its sub-agents, sub-agents may not delegate further
    max_delegation_depth: int = Field(default=1, alias="AGENT_MAX_DELEGATION_DEPTH")

    # LLM Settings
    llm_temperature: float = Field(default=0.7, alias="LLM_TEMPERATURE")
    llm_timeout: int = Field(default=300, alias="LLM_TIMEOUT")
    summary_max_tokens: int = Field(default=500, alias="SUMMARY_MAX_TOKENS")
    summary_prefix: str = Field(
        default="Summary of the earlier conversation: ", alias="SUMMARY_PREFIX"
    )

    # Token budget defaults (used when a workspace has no model config)
    token_budget_strategy: Literal["none", "sliding_window", "summarize"] = Field(
        default="none", alias="TOKEN_BUDGET_STRATEGY"
    )
    token_budget_max_tokens: int = Field(default=4000, alias="TOKEN_BUDGET_MAX_TOKENS")
    token_budget_summary_threshold: int = Field(
        default=3000, alias="TOKEN_BUDGET_SUMMARY_THRESHOLD"
    )
    token_budget_reserve_ratio: float = Field(default=0.0, alias="TOKEN_BUDGET_RESERVE_RATIO")

    # Circuit Breaker Settings
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_recovery_seconds: int = Field(
        default=60, alias="CIRCUIT_BREAKER_RECOVERY_SECONDS"
    )

    # Remote tool (MCP) Settings
    mcp_server_base_url: str = Field(default="http://localhost:8765/mcp", alias="MCP_SERVER_BASE_URL")
    mcp_timeout: float = Field(default=30.0, alias="MCP_TIMEOUT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def default_token_budget(self) -> TokenBudgetConfig:
        return TokenBudgetConfig(
            strategy=TokenBudgetStrategy(self.token_budget_strategy),
            max_tokens=self.token_budget_max_tokens,
            summary_threshold=self.token_budget_summary_threshold,
            reserve_ratio=self.token_budget_reserve_ratio,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
