"""Configuration models for the context manager and its components."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class ContextConfig(BaseModel):
    """Budget and compaction trigger settings applied to every new context."""

    max_tokens: int = Field(
        default=1_000_000,
        ge=1,
        description="Token budget fixed on each context at creation. Never changed afterwards.",
    )

    compaction_threshold: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Fraction of max_tokens at which an append triggers compaction.",
    )

    recency_window_size: int = Field(
        default=10,
        ge=1,
        description="Number of most recent turns kept verbatim across a compaction.",
    )


class CompactionConfig(BaseModel):
    """Configuration for the compaction engine."""

    auto: bool = True
    """Whether appends trigger compaction automatically when the threshold is crossed."""

    model: str = Field(
        default="gemini/gemini-2.0-flash",
        description="Model used for summary generation, in litellm format.",
    )

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    max_output_tokens: int = Field(default=8_192, ge=256)

    generation_timeout_secs: float = Field(
        default=120.0,
        gt=0.0,
        description="Upper bound on a single summary generation call.",
    )

    recency_token_cap: int | None = Field(
        default=None,
        ge=1,
        description=(
            "Optional token cap on the retained recency window. When set, the oldest "
            "retained turns are dropped until the window fits (at least one turn is "
            "always kept). None keeps the fixed-count window."
        ),
    )


class AccountantConfig(BaseModel):
    """Configuration for the token accountant."""

    model: str | None = Field(
        default=None,
        description="Model whose tokenizer is used for counting. None = compaction model.",
    )

    timeout_secs: float = Field(
        default=10.0,
        gt=0.0,
        description="Upper bound on a single external counting call before falling back.",
    )

    chars_per_token: int = Field(
        default=4,
        ge=1,
        description="Characters per token used by the local fallback estimate.",
    )


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.contextbound/contexts.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class ContextManagerConfig(BaseModel):
    """
    Top-level configuration for a ``ContextManager``.

    Example::

        config = ContextManagerConfig(
            context=ContextConfig(max_tokens=200_000, recency_window_size=6),
            store=StoreConfig(db_path="/var/lib/app/contexts.db"),
        )
    """

    context: ContextConfig = Field(default_factory=ContextConfig)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    accountant: AccountantConfig = Field(default_factory=AccountantConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @model_validator(mode="after")
    def validate_recency_cap(self) -> ContextManagerConfig:
        cap = self.compaction.recency_token_cap
        if cap is not None and cap >= self.context.max_tokens:
            raise ValueError("compaction.recency_token_cap must be less than context.max_tokens")
        return self

    @property
    def counting_model(self) -> str:
        return self.accountant.model or self.compaction.model

    @classmethod
    def default(cls) -> ContextManagerConfig:
        """Return a config instance with all defaults."""
        return cls()
