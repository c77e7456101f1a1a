"""Tests for Settings."""

import pytest
from pydantic import ValidationError

from dialogue_engine.configuration.config import Settings
from dialogue_engine.domain.model.llm import TokenBudgetStrategy


@pytest.mark.unit
class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TOKEN_BUDGET_STRATEGY", raising=False)
        settings = Settings(_env_file=None)

        assert settings.stream_connection_timeout == 3000.0
        assert settings.max_delegation_depth == 1
        assert settings.max_tool_rounds == 20
        assert settings.default_token_budget.strategy == TokenBudgetStrategy.NONE

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TOKEN_BUDGET_STRATEGY", "summarize")
        monkeypatch.setenv("TOKEN_BUDGET_MAX_TOKENS", "1000")
        monkeypatch.setenv("TOKEN_BUDGET_SUMMARY_THRESHOLD", "1200")
        monkeypatch.setenv("TOKEN_BUDGET_RESERVE_RATIO", "0.25")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)
        budget = settings.default_token_budget

        assert settings.log_level == "DEBUG"
        assert budget.strategy == TokenBudgetStrategy.SUMMARIZE
        assert budget.summary_threshold == 1200
        assert budget.retain_budget == 750

    def test_unknown_strategy_rejected(self, monkeypatch):
        monkeypatch.setenv("TOKEN_BUDGET_STRATEGY", "truncate")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_invalid_budget_surfaces_on_use(self):
        settings = Settings(_env_file=None, token_budget_max_tokens=0)

        with pytest.raises(ValueError):
            settings.default_token_budget
