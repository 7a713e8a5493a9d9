"""
Base protocol and types for revisioned key-value backends.

This module defines the Backend protocol that all storage engines must
implement, along with the log row and key-value types and the error
hierarchy shared by every engine.

Invariants:
    - The log is append-only: rows are never updated or removed
    - Revisions are strictly increasing and global across all keys
    - The current row for a key is the row with the greatest revision
    - A key whose current row is a tombstone is absent

How to change safely:
    - Protocol changes require updating all implementations
    - Keep get(key, revision) refusing until point-in-time reads exist
    - New engines must pass the shared backend test suite
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Optional,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

Revision = int

# Separator that turns a prefix into a hierarchical scope
PATH_SEPARATOR = "/"


class RevkvError(Exception):
    """Base exception for backend operations."""
    pass


class BackendError(RevkvError):
    """The storage engine failed (constraint, connectivity or query error)."""
    pass


class StoreIOError(RevkvError):
    """Filesystem failure while initializing a store."""
    pass


class UnsupportedOperationError(RevkvError, NotImplementedError):
    """Operation is part of the contract but has no implementation yet."""
    pass


@dataclass(frozen=True)
class KeyValue:
    """Current state of a key as seen by callers.

    Attributes:
        key: Key name
        create_revision: Revision that created the key
        mod_revision: Revision of the row this view was projected from
        value: Payload, None for a tombstone
        lease: Reserved lease id (never enforced)
    """

    key: str
    create_revision: Revision
    mod_revision: Revision
    value: Optional[bytes] = None
    lease: Optional[int] = None


@dataclass(frozen=True)
class LogRow:
    """One immutable entry of the revision log.

    Attributes:
        id: Revision assigned by the engine on append
        name: Key this row concerns
        created: First row of the key
        deleted: Tombstone row
        create_revision: Revision of the row that created the key
        prev_revision: Reserved link to the previous row (never populated)
        lease: Reserved lease id
        value: New payload, None for tombstones
        old_value: Payload superseded by this row
    """

    id: Revision
    name: str
    created: bool
    deleted: bool
    create_revision: Revision
    prev_revision: Optional[Revision] = None
    lease: Optional[int] = None
    value: Optional[bytes] = None
    old_value: Optional[bytes] = None

    def to_key_value(self) -> KeyValue:
        return KeyValue(
            key=self.name,
            create_revision=self.create_revision,
            mod_revision=self.id,
            value=self.value,
            lease=self.lease,
        )


def is_hierarchical(prefix: str) -> bool:
    """Whether prefix denotes a directory-like scope rather than a key."""
    return prefix.endswith(PATH_SEPARATOR)


def validate_mutation(key: str, value: Optional[bytes] = None) -> None:
    """Reject malformed mutation arguments before a transaction is opened.

    Raises:
        ValueError: If key is empty or value is not bytes-like
    """
    if not isinstance(key, str) or not key:
        raise ValueError("key must be a non-empty string")
    if value is not None and not isinstance(value, (bytes, bytearray, memoryview)):
        raise ValueError(f"value must be bytes, got {type(value).__name__}")


@runtime_checkable
class Backend(Protocol):
    """Protocol for revisioned key-value storage engines.

    Every mutation appends one row to a global log; reads derive the
    current state of each key from that log. Engines differ only in how
    they store the log.

    Consistency contract:
        - put() and delete() run in a single transaction each
        - Concurrent writers never share or skip a revision
        - A failed mutation leaves no row visible

    Example:
        >>> backend = await SqliteBackend.create(Path("state.db"))
        >>> rev = await backend.put("/root/health", b"OK")
        >>> kv = await backend.get("/root/health")
        >>> assert kv.mod_revision == rev
    """

    async def size(self) -> int:
        """Approximate store footprint in bytes."""
        ...

    async def current_revision(self) -> Revision:
        """Greatest revision in the log, 0 when empty."""
        ...

    async def count(self, prefix: str) -> int:
        """Number of live keys matching prefix."""
        ...

    async def put(self, key: str, value: bytes) -> Revision:
        """Create or update a key.

        Args:
            key: Key name
            value: New payload

        Returns:
            Revision of the appended row
        """
        ...

    async def get(
        self,
        key: str,
        revision: Optional[Revision] = None,
    ) -> Optional[KeyValue]:
        """Get the current state of a key.

        Args:
            key: Exact key name
            revision: Point-in-time revision (not supported)

        Returns:
            KeyValue or None if the key is absent

        Raises:
            UnsupportedOperationError: If revision is given
        """
        if revision is not None:
            raise UnsupportedOperationError(
                f"Reads at a past revision are not supported (requested {revision})"
            )
        kvs = await self.list_current(key, 1, False)
        return kvs[0] if kvs else None

    async def list_current(
        self,
        prefix: str,
        limit: int = -1,
        include_deleted: bool = False,
    ) -> list[KeyValue]:
        """List the current row of every key matching prefix.

        Args:
            prefix: Exact key, or hierarchical scope ending in '/'
            limit: Maximum rows, <= 0 for unbounded
            include_deleted: Also return keys whose current row is a tombstone

        Returns:
            KeyValues ordered by ascending mod_revision
        """
        ...

    async def delete(self, key: str) -> Revision:
        """Delete a key by appending a tombstone.

        Returns:
            Revision of the tombstone, or the unchanged current revision
            if the key was already absent
        """
        ...

    async def close(self) -> None:
        """Release engine resources."""
        ...


async def create_backend(config: "ServerConfig") -> Backend:
    """Factory function to open a backend from configuration.

    For SQLite, a missing store file is created and initialized; an
    existing one is opened through a fresh pool and its schema re-applied.

    Args:
        config: Server configuration

    Returns:
        Ready-to-use Backend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from pathlib import Path

    from ..config import BackendKind
    from .memory import InMemoryBackend
    from .sqlite import SqliteBackend, SqlitePool, SqlitePoolOptions

    storage = config.storage
    if storage.backend == BackendKind.MEMORY:
        return InMemoryBackend()
    elif storage.backend == BackendKind.SQLITE:
        options = SqlitePoolOptions.from_storage_config(storage)
        path = Path(storage.db_path)
        if not path.exists():
            return await SqliteBackend.create(path, options)
        logger.info("Opening existing datasource", extra={"path": str(path)})
        return await SqliteBackend.with_pool(SqlitePool(path, options))
    else:
        raise ValueError(f"Unsupported backend: {storage.backend}")
