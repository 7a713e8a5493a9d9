"""
SQLite implementation of the revisioned key-value backend.

The whole store is one append-only table (see queries.py). Reads derive
the current row of each key by joining against MAX(id) grouped by name;
writes append exactly one row per mutation inside a single transaction.

Invariants:
    - Rows are only ever INSERTed, never UPDATEd or DELETEd
    - Writers take the database write lock up front (BEGIN IMMEDIATE)
    - Any failure inside a transaction rolls it back before propagating
    - Schema application is idempotent

How to change safely:
    - Keep every read path on the shared visibility query
    - Test concurrent writers after touching transaction handling
    - Monitor file size with size() before enabling new columns

Thread safety:
    Operations run on executor threads. Each thread borrows its own
    connection from SqlitePool; SQLite serializes writers through its
    lock and WAL journal.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import queue
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from . import queries
from .base import (
    Backend,
    BackendError,
    KeyValue,
    LogRow,
    Revision,
    StoreIOError,
    is_hierarchical,
    validate_mutation,
)

if TYPE_CHECKING:
    from ..config import StorageConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SqlitePoolOptions:
    """Connection pool configuration.

    Attributes:
        max_connections: Maximum open connections
        wal_mode: Enable SQLite WAL journaling
        shared_cache: Open connections in shared-cache mode
        busy_timeout_ms: How long a writer waits for the write lock
        cache_size_pages: SQLite cache size (negative = KB)
    """

    max_connections: int = 8
    wal_mode: bool = True
    shared_cache: bool = False
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000

    @classmethod
    def from_storage_config(cls, storage: "StorageConfig") -> SqlitePoolOptions:
        return cls(
            max_connections=storage.max_connections,
            wal_mode=storage.wal_mode,
            shared_cache=storage.shared_cache,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )


class SqlitePool:
    """Bounded pool of SQLite connections to one database file.

    Connections are opened lazily, in autocommit mode so transactions
    are always explicit, and may be used from any thread (one thread at
    a time).

    Example:
        >>> pool = SqlitePool(Path("state.db"))
        >>> with pool.acquire() as conn:
        ...     conn.execute("SELECT 1")
        >>> pool.close()
    """

    def __init__(self, path: Path | str, options: SqlitePoolOptions | None = None) -> None:
        self.path = Path(path)
        self.options = options or SqlitePoolOptions()
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue()
        self._slots = threading.BoundedSemaphore(self.options.max_connections)
        # Shared-cache connections report table locks without waiting on the busy
        # handler, so borrowers of a shared-cache pool take turns
        self._shared_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _connect(self) -> sqlite3.Connection:
        if self.options.shared_cache:
            target = self.path.resolve().as_uri() + "?cache=shared"
        else:
            target = str(self.path)

        conn = sqlite3.connect(
            target,
            timeout=self.options.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
            uri=self.options.shared_cache,
        )
        conn.row_factory = sqlite3.Row

        conn.execute(f"PRAGMA busy_timeout = {self.options.busy_timeout_ms}")
        conn.execute(f"PRAGMA cache_size = {self.options.cache_size_pages}")
        if self.options.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")

        logger.debug("Opened SQLite connection", extra={"path": str(self.path)})
        return conn

    @contextmanager
    def acquire(self) -> Iterator[sqlite3.Connection]:
        """Borrow a connection, opening one if none is idle.

        Blocks while max_connections are in use. With shared_cache on,
        also blocks while another thread holds a connection.

        Raises:
            BackendError: If the pool is closed
        """
        if self._closed:
            raise BackendError(f"Connection pool for {self.path} is closed")

        self._slots.acquire()
        try:
            with self._shared_lock if self.options.shared_cache else nullcontext():
                try:
                    conn = self._idle.get_nowait()
                except queue.Empty:
                    conn = self._connect()

                try:
                    yield conn
                finally:
                    # A connection stuck in a transaction is not safe to reuse
                    if self._closed or conn.in_transaction:
                        conn.close()
                    else:
                        self._idle.put(conn)
        finally:
            self._slots.release()

    def close(self) -> None:
        """Close idle connections and refuse new borrowers."""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
        logger.debug("Closed SQLite pool", extra={"path": str(self.path)})


def _create_store_file(path: Path) -> None:
    """Create an empty store file, failing if it already exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "xb"):
        pass


def _to_log_row(row: sqlite3.Row) -> LogRow:
    return LogRow(
        id=row["id"],
        name=row["name"],
        created=bool(row["created"]),
        deleted=bool(row["deleted"]),
        create_revision=row["create_revision"],
        prev_revision=row["prev_revision"],
        lease=row["lease"],
        value=row["value"],
        old_value=row["old_value"],
    )


class SqliteBackend(Backend):
    """Revisioned key-value backend on a single SQLite file.

    Use create() for a brand-new store file, or with_pool() to adopt an
    already opened pool. Both apply the schema before returning.

    Example:
        >>> backend = await SqliteBackend.create(Path("/var/lib/revkv/state.db"))
        >>> await backend.put("/root/health", b"OK")
        1
        >>> await backend.count("/root/")
        1
    """

    def __init__(self, pool: SqlitePool) -> None:
        self.pool = pool

    @classmethod
    async def create(
        cls,
        path: Path | str,
        options: SqlitePoolOptions | None = None,
    ) -> SqliteBackend:
        """Create a new store file and open a backend on it.

        Args:
            path: Store file path, must not exist yet
            options: Pool options

        Raises:
            StoreIOError: If the file exists or cannot be created
            BackendError: If the schema cannot be applied; the new file is
                removed so that create() can be retried
        """
        path = Path(path)
        logger.info("Connecting to datasource", extra={"path": str(path)})

        try:
            _create_store_file(path)
        except OSError as e:
            raise StoreIOError(f"Cannot create store file {path}: {e}") from e

        pool = SqlitePool(path, options)
        try:
            return await cls.with_pool(pool)
        except Exception:
            pool.close()
            path.unlink(missing_ok=True)
            raise

    @classmethod
    async def with_pool(cls, pool: SqlitePool) -> SqliteBackend:
        """Open a backend on an existing pool, applying the schema.

        Raises:
            BackendError: If the schema cannot be applied
        """
        backend = cls(pool)
        logger.info("Configuring database table schema and indexes")
        await backend._run(backend._apply_schema)
        logger.info("Backend setup complete", extra={"path": str(pool.path)})
        return backend

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking storage call on the executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except sqlite3.Error as e:
            raise BackendError(f"{type(e).__name__}: {e}") from e

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        with self.pool.acquire() as conn:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _apply_schema(self) -> None:
        with self.pool.acquire() as conn:
            for statement in queries.SCHEMA:
                logger.debug("Running migration", extra={"sql": statement})
                conn.execute(statement)

    @staticmethod
    def _current_revision_with(conn: sqlite3.Connection) -> Revision:
        logger.debug("CURRENT REVISION SQL", extra={"sql": queries.CURRENT_REVISION_SQL})
        return conn.execute(queries.CURRENT_REVISION_SQL).fetchone()["id"]

    @staticmethod
    def _list_current_with(
        conn: sqlite3.Connection,
        prefix: str,
        limit: int,
        include_deleted: bool,
        exact: bool = False,
    ) -> list[LogRow]:
        hierarchical = not exact and is_hierarchical(prefix)
        params: list[Any] = [*queries.match_params(prefix, hierarchical), include_deleted]

        if limit > 0:
            sql = queries.LIST_PREFIX_LIMIT_SQL if hierarchical else queries.LIST_EXACT_LIMIT_SQL
            params.append(limit)
        else:
            sql = queries.LIST_PREFIX_SQL if hierarchical else queries.LIST_EXACT_SQL

        logger.debug("LIST SQL", extra={"sql": sql, "prefix": prefix, "limit": limit})
        return [_to_log_row(row) for row in conn.execute(sql, params)]

    def _current_row(self, conn: sqlite3.Connection, key: str) -> Optional[LogRow]:
        # Mutations always address one literal key, even when it ends in "/"
        rows = self._list_current_with(conn, key, 1, False, exact=True)
        return rows[0] if rows else None

    @staticmethod
    def _insert(
        conn: sqlite3.Connection,
        name: str,
        created: bool,
        deleted: bool,
        create_revision: Revision,
        value: Optional[bytes],
        old_value: Optional[bytes],
    ) -> Revision:
        logger.debug("INSERT SQL", extra={"sql": queries.INSERT_SQL, "key": name})
        cursor = conn.execute(
            queries.INSERT_SQL,
            (
                name,
                created,
                deleted,
                create_revision,
                None,  # prev_revision
                None,  # lease
                value,
                old_value,
            ),
        )
        return cursor.lastrowid

    def _size(self) -> int:
        with self.pool.acquire() as conn:
            logger.debug("SIZE SQL", extra={"sql": queries.SIZE_SQL})
            return conn.execute(queries.SIZE_SQL).fetchone()["size"] or 0

    def _current_revision(self) -> Revision:
        with self.pool.acquire() as conn:
            return self._current_revision_with(conn)

    def _count(self, prefix: str) -> int:
        hierarchical = is_hierarchical(prefix)
        sql = queries.COUNT_PREFIX_SQL if hierarchical else queries.COUNT_EXACT_SQL
        params = [*queries.match_params(prefix, hierarchical), False]
        with self.pool.acquire() as conn:
            logger.debug("COUNT SQL", extra={"sql": sql, "prefix": prefix})
            return conn.execute(sql, params).fetchone()["count"]

    def _list_current(self, prefix: str, limit: int, include_deleted: bool) -> list[LogRow]:
        with self._transaction() as conn:
            return self._list_current_with(conn, prefix, limit, include_deleted)

    def _put(self, key: str, value: bytes) -> Revision:
        with self._transaction(write=True) as conn:
            next_revision = self._current_revision_with(conn) + 1
            current = self._current_row(conn, key)
            if current is not None:
                logger.debug("Updating existing key", extra={"key": key})
                revision = self._insert(
                    conn, key, False, False, current.create_revision, value, current.value
                )
            else:
                logger.debug("Creating new key", extra={"key": key})
                revision = self._insert(conn, key, True, False, next_revision, value, None)
        return revision

    def _delete(self, key: str) -> Revision:
        with self._transaction(write=True) as conn:
            current = self._current_row(conn, key)
            if current is None:
                logger.debug("Delete of absent key is a no-op", extra={"key": key})
                return self._current_revision_with(conn)

            logger.debug("Writing tombstone", extra={"key": key})
            revision = self._insert(conn, key, False, True, 0, None, current.value)
        return revision

    async def size(self) -> int:
        return await self._run(self._size)

    async def current_revision(self) -> Revision:
        return await self._run(self._current_revision)

    async def count(self, prefix: str) -> int:
        return await self._run(self._count, prefix)

    async def put(self, key: str, value: bytes) -> Revision:
        validate_mutation(key, value)
        return await self._run(self._put, key, bytes(value))

    async def list_current(
        self,
        prefix: str,
        limit: int = -1,
        include_deleted: bool = False,
    ) -> list[KeyValue]:
        rows = await self._run(self._list_current, prefix, limit, include_deleted)
        return [row.to_key_value() for row in rows]

    async def list_rows(self, prefix: str, limit: int = -1) -> list[LogRow]:
        """Like list_current(include_deleted=True) but returning full log rows."""
        return await self._run(self._list_current, prefix, limit, True)

    async def delete(self, key: str) -> Revision:
        validate_mutation(key)
        return await self._run(self._delete, key)

    async def close(self) -> None:
        self.pool.close()
