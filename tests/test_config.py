"""Tests for configuration models and environment settings."""

from __future__ import annotations

import re
import tomllib
from pathlib import Path

import pytest

import contextbound
from contextbound.models.config import (
    AccountantConfig,
    CompactionConfig,
    ContextConfig,
    ContextManagerConfig,
    StoreConfig,
)
from contextbound.settings import ContextBoundSettings


class TestDefaults:
    def test_context_defaults(self) -> None:
        cfg = ContextConfig()
        assert cfg.max_tokens == 1_000_000
        assert cfg.compaction_threshold == 0.9
        assert cfg.recency_window_size == 10

    def test_compaction_defaults(self) -> None:
        cfg = CompactionConfig()
        assert cfg.auto is True
        assert cfg.temperature == 0.3
        assert cfg.generation_timeout_secs == 120.0
        assert cfg.recency_token_cap is None

    def test_accountant_defaults(self) -> None:
        cfg = AccountantConfig()
        assert cfg.timeout_secs == 10.0
        assert cfg.chars_per_token == 4

    def test_store_default_path(self) -> None:
        assert StoreConfig().db_path == "~/.contextbound/contexts.db"

    def test_counting_model_falls_back_to_compaction_model(self) -> None:
        cfg = ContextManagerConfig(compaction=CompactionConfig(model="openai/gpt-4o"))
        assert cfg.counting_model == "openai/gpt-4o"
        cfg = cfg.model_copy(update={"accountant": AccountantConfig(model="anthropic/claude-3")})
        assert cfg.counting_model == "anthropic/claude-3"


class TestBounds:
    @pytest.mark.parametrize("threshold", [0.0, -0.1, 1.5])
    def test_threshold_bounds(self, threshold) -> None:
        with pytest.raises(ValueError):
            ContextConfig(compaction_threshold=threshold)

    def test_threshold_of_one_allowed(self) -> None:
        assert ContextConfig(compaction_threshold=1.0).compaction_threshold == 1.0

    def test_window_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ContextConfig(recency_window_size=0)

    def test_max_tokens_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ContextConfig(max_tokens=0)

    def test_recency_cap_below_budget(self) -> None:
        with pytest.raises(ValueError):
            ContextManagerConfig(
                context=ContextConfig(max_tokens=100),
                compaction=CompactionConfig(recency_token_cap=100),
            )


class TestSettings:
    def test_env_overrides(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("CONTEXTBOUND_MAX_CONTEXT_TOKENS", "200000")
        monkeypatch.setenv("CONTEXTBOUND_COMPACTION_THRESHOLD", "0.85")
        monkeypatch.setenv("CONTEXTBOUND_RECENCY_WINDOW_SIZE", "6")
        monkeypatch.setenv("CONTEXTBOUND_MODEL", "openai/gpt-4o-mini")
        monkeypatch.setenv("CONTEXTBOUND_DATABASE_PATH", str(tmp_path / "env.db"))

        cfg = ContextBoundSettings(_env_file=None).to_config()

        assert cfg.context.max_tokens == 200_000
        assert cfg.context.compaction_threshold == 0.85
        assert cfg.context.recency_window_size == 6
        assert cfg.compaction.model == "openai/gpt-4o-mini"
        assert cfg.counting_model == "openai/gpt-4o-mini"
        assert cfg.store.db_path == str(tmp_path / "env.db")

    def test_invalid_env_value_rejected_by_config(self, monkeypatch) -> None:
        monkeypatch.setenv("CONTEXTBOUND_COMPACTION_THRESHOLD", "2")
        with pytest.raises(ValueError):
            ContextBoundSettings(_env_file=None).to_config()


def test_version_exposed() -> None:
    assert contextbound.__version__ == "0.1.0"


ROOT = Path(__file__).resolve().parent.parent
IMPORT_NAMES = {"pydantic-settings": "pydantic_settings", "python-ulid": "ulid"}


def test_every_declared_dependency_is_imported() -> None:
    project = tomllib.loads((ROOT / "pyproject.toml").read_text())["project"]
    source = "\n".join(p.read_text() for p in (ROOT / "src" / "contextbound").rglob("*.py"))
    imported = set(re.findall(r"^\s*(?:from|import)\s+(\w+)", source, re.MULTILINE))
    for requirement in project["dependencies"]:
        name = re.match(r"[A-Za-z0-9_.\-]+", requirement).group(0).lower()
        assert IMPORT_NAMES.get(name, name) in imported, f"{name} is declared but never imported"
