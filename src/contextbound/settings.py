"""Environment-driven settings for embedding the context manager in a service."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from contextbound.models.config import (
    AccountantConfig,
    CompactionConfig,
    ContextConfig,
    ContextManagerConfig,
    StoreConfig,
)


class ContextBoundSettings(BaseSettings):
    """
    Settings loaded from ``CONTEXTBOUND_*`` environment variables (or a ``.env`` file).

    Example::

        CONTEXTBOUND_MAX_CONTEXT_TOKENS=200000
        CONTEXTBOUND_COMPACTION_THRESHOLD=0.85
        CONTEXTBOUND_DATABASE_PATH=/var/lib/app/contexts.db

        config = ContextBoundSettings().to_config()
    """

    model_config = SettingsConfigDict(env_prefix="CONTEXTBOUND_", env_file=".env", extra="ignore")

    # Context
    max_context_tokens: int = 1_000_000
    compaction_threshold: float = 0.9
    recency_window_size: int = 10

    # Generation service
    model: str = "gemini/gemini-2.0-flash"
    summary_temperature: float = 0.3
    generation_timeout_secs: float = 120.0
    count_timeout_secs: float = 10.0

    # Database
    database_path: str = "~/.contextbound/contexts.db"

    def to_config(self) -> ContextManagerConfig:
        """Build a validated ``ContextManagerConfig`` from these settings."""
        return ContextManagerConfig(
            context=ContextConfig(
                max_tokens=self.max_context_tokens,
                compaction_threshold=self.compaction_threshold,
                recency_window_size=self.recency_window_size,
            ),
            compaction=CompactionConfig(
                model=self.model,
                temperature=self.summary_temperature,
                generation_timeout_secs=self.generation_timeout_secs,
            ),
            accountant=AccountantConfig(timeout_secs=self.count_timeout_secs),
            store=StoreConfig(db_path=self.database_path),
        )
