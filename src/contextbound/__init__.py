"""
contextbound: bounded conversation contexts with automatic compaction.

Primary entry point::

    from contextbound import ContextManager, OwnerRef, new_turn

    async with ContextManager.open(db_path="contexts.db") as manager:
        ctx = await manager.get_or_create(OwnerRef.session("sess_01"))
        result = await manager.append_turn(ctx.id, new_turn("user", "Hello!"))
        print(result.usage.percentage_used)
"""

from contextbound.compaction import CompactionEngine, CompactionState
from contextbound.events.bus import ContextEvent, EventBus
from contextbound.ids import make_id
from contextbound.llm import LiteLLMTextGenerator, LiteLLMTokenCounter, TextGenerator, TokenCounter
from contextbound.log import TurnLog
from contextbound.manager import ContextManager, new_turn
from contextbound.models import (
    AccountantConfig,
    AppendResult,
    CompactionConfig,
    CompactionResult,
    Context,
    ContextConfig,
    ContextManagerConfig,
    ContextSummary,
    InvalidOwnerError,
    InvalidTurnError,
    OwnerRef,
    StoreConfig,
    Turn,
    UsageStats,
)
from contextbound.settings import ContextBoundSettings
from contextbound.store import (
    ContextNotFoundError,
    ContextStore,
    ContextStoreError,
    DuplicateContextError,
    OwnerNotFoundError,
    StoreNotInitializedError,
    StorePool,
)
from contextbound.tokens import TokenAccountant

__version__ = "0.1.0"

__all__ = [
    # Core
    "ContextManager",
    "new_turn",
    "make_id",
    # Config
    "AccountantConfig",
    "CompactionConfig",
    "ContextConfig",
    "ContextManagerConfig",
    "StoreConfig",
    "ContextBoundSettings",
    # Models
    "Context",
    "OwnerRef",
    "Turn",
    "AppendResult",
    "CompactionResult",
    "ContextSummary",
    "UsageStats",
    # Components
    "TokenAccountant",
    "TurnLog",
    "CompactionEngine",
    "CompactionState",
    "ContextStore",
    "StorePool",
    # Capabilities
    "TokenCounter",
    "TextGenerator",
    "LiteLLMTokenCounter",
    "LiteLLMTextGenerator",
    # Events
    "EventBus",
    "ContextEvent",
    # Errors
    "ContextStoreError",
    "ContextNotFoundError",
    "DuplicateContextError",
    "OwnerNotFoundError",
    "StoreNotInitializedError",
    "InvalidOwnerError",
    "InvalidTurnError",
]
