"""SQLite persistence for contexts and their owner records."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Literal

import aiosqlite
import structlog
from pydantic import TypeAdapter

from contextbound.ids import make_id
from contextbound.models.config import StoreConfig
from contextbound.models.turn import Context, OwnerRef, Turn, now_ms
from contextbound.store.pool import StorePool, open_connection

_TURNS_ADAPTER: TypeAdapter[list[Turn]] = TypeAdapter(list[Turn])

_OWNER_TABLES: dict[str, str] = {"session": "chat_sessions", "project": "projects"}
_OWNER_COLUMNS: dict[str, str] = {"session": "session_id", "project": "project_id"}


class ContextStoreError(Exception):
    """Base class for store errors."""


class StoreNotInitializedError(ContextStoreError):
    """Raised when the store is used before ``initialize()``."""


class ContextNotFoundError(ContextStoreError):
    """Raised when a context ID does not exist."""

    def __init__(self, context_id: str) -> None:
        super().__init__(f"Context not found: {context_id}")
        self.context_id = context_id


class DuplicateContextError(ContextStoreError):
    """Raised when an owner already holds a context."""

    def __init__(self, owner: OwnerRef) -> None:
        super().__init__(f"Context already exists for {owner.key}")
        self.owner = owner


class OwnerNotFoundError(ContextStoreError):
    """Raised when the session or project record for an owner does not exist."""

    def __init__(self, owner: OwnerRef) -> None:
        super().__init__(f"Owner record not found: {owner.key}")
        self.owner = owner


class OwnerRecord:
    """Thin data class for session/project rows (not Pydantic, reads stay cheap)."""

    __slots__ = (
        "id",
        "kind",
        "title",
        "project_id",
        "path",
        "description",
        "created_at",
        "updated_at",
        "total_tokens",
        "context_summary",
        "metadata",
    )

    def __init__(
        self,
        *,
        id: str,
        kind: Literal["session", "project"],
        title: str,
        created_at: int,
        updated_at: int,
        total_tokens: int = 0,
        context_summary: str | None = None,
        project_id: str | None = None,
        path: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.id = id
        self.kind = kind
        self.title = title
        self.project_id = project_id
        self.path = path
        self.description = description
        self.created_at = created_at
        self.updated_at = updated_at
        self.total_tokens = total_tokens
        self.context_summary = context_summary
        self.metadata = metadata

    @property
    def owner(self) -> OwnerRef:
        if self.kind == "session":
            return OwnerRef.session(self.id)
        return OwnerRef.project(self.id)


class ContextStore:
    """
    SQLite-backed store holding one context row per owner.

    Turns are stored as a JSON array on the context row, so every save is a
    full overwrite of the row inside one transaction. Owner records
    (``chat_sessions`` and ``projects``) carry denormalized ``total_tokens``
    and ``context_summary`` columns that are refreshed after each compaction.

    When a ``StorePool`` is supplied the store borrows the pool's shared
    connection and write lock, and ``close()`` leaves the connection open.

    Usage::

        store = ContextStore(StoreConfig(db_path="/tmp/contexts.db"))
        await store.initialize()
        try:
            await store.create_session("sess_01", title="Chat")
            ctx = await store.create(OwnerRef.session("sess_01"), max_tokens=100_000)
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._write_lock: asyncio.Lock | None = None
        self._logger = structlog.get_logger("contextbound.store")

    async def initialize(self) -> None:
        """
        Open (or borrow) a database connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._pool is not None:
            conn = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            write_lock = self._pool.write_lock(self._db_path)
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
            write_lock = asyncio.Lock()

        schema = (Path(__file__).parent / "schema.sql").read_text()
        await conn.executescript(schema)
        await conn.commit()

        self._conn = conn
        self._write_lock = write_lock
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Release the connection. Pool-owned connections are left open."""
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None
        self._write_lock = None

    @property
    def is_initialized(self) -> bool:
        return self._conn is not None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotInitializedError("Store is not initialized. Call initialize() first.")
        return self._conn

    def _lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            raise StoreNotInitializedError("Store is not initialized. Call initialize() first.")
        return self._write_lock

    # ── Contexts ───────────────────────────────────────────────────────────────

    async def create(
        self, owner: OwnerRef, max_tokens: int, *, context_id: str | None = None
    ) -> Context:
        """
        Insert an empty context for ``owner``.

        Raises:
            OwnerNotFoundError: If the owner's session/project record does not exist.
            DuplicateContextError: If the owner already has a context.
        """
        conn = self._conn_or_raise()
        now = now_ms()
        context = Context(
            id=context_id or make_id("ctx"),
            owner=owner,
            max_tokens=max_tokens,
            created_at=now,
            updated_at=now,
        )
        async with self._lock():
            try:
                await conn.execute(
                    """
                    INSERT INTO contexts
                        (id, session_id, project_id, turns, summary,
                         total_tokens, max_tokens, created_at, updated_at)
                    VALUES (?, ?, ?, '[]', NULL, 0, ?, ?, ?)
                    """,
                    (context.id, owner.session_id, owner.project_id, max_tokens, now, now),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                if "FOREIGN KEY" in str(exc).upper():
                    raise OwnerNotFoundError(owner) from exc
                raise DuplicateContextError(owner) from exc

        self._logger.debug("context_row_created", context_id=context.id, owner=owner.key)
        return context

    async def load(self, owner: OwnerRef) -> Context | None:
        """Return the context held by ``owner``, or None if it has none yet."""
        conn = self._conn_or_raise()
        column = _OWNER_COLUMNS[owner.kind]
        async with conn.execute(
            f"SELECT * FROM contexts WHERE {column} = ?", (owner.owner_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_context(row) if row is not None else None

    async def get(self, context_id: str) -> Context | None:
        """Return the context with ``context_id``, or None if it does not exist."""
        conn = self._conn_or_raise()
        async with conn.execute("SELECT * FROM contexts WHERE id = ?", (context_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_context(row) if row is not None else None

    async def save(self, context: Context) -> None:
        """
        Overwrite the stored row with ``context``.

        Raises:
            ContextNotFoundError: If the row no longer exists (owner deleted).
        """
        conn = self._conn_or_raise()
        async with self._lock():
            try:
                await self._write_context(conn, context)
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def save_compacted(self, context: Context) -> None:
        """
        Overwrite the context row and refresh the owner's denormalized fields.

        Both writes commit in one transaction; if either fails nothing is
        committed.

        Raises:
            ContextNotFoundError: If the context row no longer exists.
        """
        conn = self._conn_or_raise()
        owner = context.owner
        table = _OWNER_TABLES[owner.kind]
        async with self._lock():
            try:
                await self._write_context(conn, context)
                await conn.execute(
                    f"UPDATE {table} SET context_summary = ?, total_tokens = ?, updated_at = ?"
                    " WHERE id = ?",
                    (context.summary_text, context.total_tokens, now_ms(), owner.owner_id),
                )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        self._logger.debug(
            "owner_usage_updated", owner=owner.key, total_tokens=context.total_tokens
        )

    async def _write_context(self, conn: aiosqlite.Connection, context: Context) -> None:
        turns_json = _TURNS_ADAPTER.dump_json(context.turns).decode()
        async with conn.execute(
            """
            UPDATE contexts
               SET turns = ?, summary = ?, total_tokens = ?, updated_at = ?
             WHERE id = ?
            """,
            (turns_json, context.summary_text, context.total_tokens, context.updated_at, context.id),
        ) as cursor:
            if cursor.rowcount == 0:
                raise ContextNotFoundError(context.id)

    # ── Owner records ──────────────────────────────────────────────────────────

    async def create_session(
        self, id: str, *, title: str = "New Chat", project_id: str | None = None
    ) -> OwnerRecord:
        """
        Insert a chat session record.

        Raises:
            ContextStoreError: If the ID is taken or ``project_id`` does not exist.
        """
        conn = self._conn_or_raise()
        now = now_ms()
        async with self._lock():
            try:
                await conn.execute(
                    "INSERT INTO chat_sessions (id, title, project_id, created_at, updated_at)"
                    " VALUES (?, ?, ?, ?, ?)",
                    (id, title, project_id, now, now),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise ContextStoreError(f"Cannot create session {id}: {exc}") from exc
        return OwnerRecord(
            id=id, kind="session", title=title, project_id=project_id, created_at=now, updated_at=now
        )

    async def create_project(
        self,
        id: str,
        *,
        name: str,
        path: str,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OwnerRecord:
        """
        Insert a project record. ``path`` must be unique across projects.

        Raises:
            ContextStoreError: If the ID or path is already taken.
        """
        conn = self._conn_or_raise()
        now = now_ms()
        meta_json = json.dumps(metadata) if metadata else None
        async with self._lock():
            try:
                await conn.execute(
                    """
                    INSERT INTO projects
                        (id, name, path, description, created_at, updated_at, metadata)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (id, name, path, description, now, now, meta_json),
                )
                await conn.commit()
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise ContextStoreError(f"Cannot create project {id}: {exc}") from exc
        return OwnerRecord(
            id=id,
            kind="project",
            title=name,
            path=path,
            description=description,
            created_at=now,
            updated_at=now,
            metadata=metadata,
        )

    async def get_owner_record(self, owner: OwnerRef) -> OwnerRecord | None:
        """Return the session/project row behind ``owner``, or None."""
        conn = self._conn_or_raise()
        table = _OWNER_TABLES[owner.kind]
        async with conn.execute(f"SELECT * FROM {table} WHERE id = ?", (owner.owner_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        if owner.kind == "session":
            return OwnerRecord(
                id=row["id"],
                kind="session",
                title=row["title"],
                project_id=row["project_id"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                total_tokens=row["total_tokens"],
                context_summary=row["context_summary"],
            )
        return OwnerRecord(
            id=row["id"],
            kind="project",
            title=row["name"],
            path=row["path"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            total_tokens=row["total_tokens"],
            context_summary=row["context_summary"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session record and, by cascade, its context. Returns True if deleted."""
        return await self._delete_owner("chat_sessions", session_id)

    async def delete_project(self, project_id: str) -> bool:
        """Delete a project record and, by cascade, its context. Returns True if deleted."""
        return await self._delete_owner("projects", project_id)

    async def _delete_owner(self, table: str, owner_id: str) -> bool:
        conn = self._conn_or_raise()
        async with self._lock():
            async with conn.execute(f"DELETE FROM {table} WHERE id = ?", (owner_id,)) as cursor:
                deleted = cursor.rowcount > 0
            await conn.commit()
        if deleted:
            self._logger.info("owner_deleted", table=table, owner_id=owner_id)
        return deleted

    # ── Private Helpers ────────────────────────────────────────────────────────

    def _row_to_context(self, row: aiosqlite.Row) -> Context:
        if row["session_id"] is not None:
            owner = OwnerRef.session(row["session_id"])
        else:
            owner = OwnerRef.project(row["project_id"])
        return Context(
            id=row["id"],
            owner=owner,
            turns=_TURNS_ADAPTER.validate_json(row["turns"]),
            summary_text=row["summary"],
            total_tokens=row["total_tokens"],
            max_tokens=row["max_tokens"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
