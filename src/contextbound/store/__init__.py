"""contextbound persistence layer."""

from contextbound.store.context_store import (
    ContextNotFoundError,
    ContextStore,
    ContextStoreError,
    DuplicateContextError,
    OwnerNotFoundError,
    OwnerRecord,
    StoreNotInitializedError,
)
from contextbound.store.pool import StorePool

__all__ = [
    "ContextNotFoundError",
    "ContextStore",
    "ContextStoreError",
    "DuplicateContextError",
    "OwnerNotFoundError",
    "OwnerRecord",
    "StoreNotInitializedError",
    "StorePool",
]
