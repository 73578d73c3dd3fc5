"""
Shared SQLite connection pool for ``ContextStore``.

One ``StorePool`` holds a single ``aiosqlite.Connection`` per database path.
Every ``ContextStore`` pointing at that path borrows the same connection, so
several context managers in one process (one per tenant, say) never fight
over SQLite's single-writer lock.

Because all stores on a path share one connection, they must also share one
write lock: two coroutines interleaving statements on the same connection
would otherwise commit each other's half-finished transactions.

Usage::

    pool = StorePool()
    store_a = ContextStore(config, pool=pool)
    store_b = ContextStore(config, pool=pool)   # same path, same connection
    await store_a.initialize()
    await store_b.initialize()
    ...
    await pool.close_all()
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("contextbound.store.pool")


def resolve_db_path(db_path: str) -> str:
    """Expand ``~`` and resolve ``db_path`` to the absolute key used by the pool."""
    return str(Path(db_path).expanduser().resolve())


async def open_connection(
    db_path: str, *, wal_mode: bool = True, connection_timeout: float = 30.0
) -> aiosqlite.Connection:
    """Open a configured connection (row factory, WAL, foreign keys) to ``db_path``."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


class StorePool:
    """
    Process-scoped registry of open connections and their write locks.

    Only safe to use from a single asyncio event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the shared connection for ``db_path``, opening it on first use.

        Concurrent callers for the same path wait on a per-path open lock so
        the file is opened exactly once.
        """
        resolved = resolve_db_path(db_path)
        if resolved in self._connections:
            return self._connections[resolved]

        open_lock = self._open_locks.setdefault(resolved, asyncio.Lock())
        async with open_lock:
            if resolved in self._connections:
                return self._connections[resolved]
            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            self._connections[resolved] = conn
            self._write_locks[resolved] = asyncio.Lock()
            _logger.debug("pool_connection_opened", db_path=resolved)
            return conn

    def write_lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the write lock shared by every store on ``db_path``.

        Raises:
            KeyError: If ``acquire()`` has not been called for this path.
        """
        return self._write_locks[resolve_db_path(db_path)]

    async def close_path(self, db_path: str) -> None:
        """Close and forget the connection for a single path."""
        resolved = resolve_db_path(db_path)
        conn = self._connections.pop(resolved, None)
        self._write_locks.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if conn is not None:
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._connections):
            await self.close_path(path)
