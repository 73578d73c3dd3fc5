"""contextbound data models."""

from contextbound.models.config import (
    AccountantConfig,
    CompactionConfig,
    ContextConfig,
    ContextManagerConfig,
    StoreConfig,
)
from contextbound.models.results import (
    AppendResult,
    CompactionResult,
    ContextSummary,
    UsageStats,
)
from contextbound.models.turn import (
    Context,
    InvalidOwnerError,
    InvalidTurnError,
    OwnerRef,
    Role,
    Turn,
    TurnKind,
    render_turns,
)

__all__ = [
    # Config
    "AccountantConfig",
    "CompactionConfig",
    "ContextConfig",
    "ContextManagerConfig",
    "StoreConfig",
    # Turns and contexts
    "Context",
    "OwnerRef",
    "Role",
    "Turn",
    "TurnKind",
    "render_turns",
    # Caller errors
    "InvalidOwnerError",
    "InvalidTurnError",
    # Results
    "AppendResult",
    "CompactionResult",
    "ContextSummary",
    "UsageStats",
]
