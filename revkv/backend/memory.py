"""
In-memory revisioned key-value backend.

This module provides a process-local backend for:
- Unit tests
- Gateway and CLI tests
- Local development without a database file

The log is a plain list of LogRow ordered by revision; the visibility
query is re-evaluated over the whole list on every read, exactly as the
SQLite engine derives current rows with its max-id-per-name join.

Invariants:
    - All data is lost on process exit
    - Same revision and visibility semantics as the SQLite backend
    - Mutations are serialized with an asyncio lock
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .base import (
    Backend,
    BackendError,
    KeyValue,
    LogRow,
    Revision,
    is_hierarchical,
    validate_mutation,
)

logger = logging.getLogger(__name__)


class InMemoryBackend(Backend):
    """In-memory implementation of Backend.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.put("/root/health", b"OK")
        1
        >>> (await backend.get("/root/health")).value
        b'OK'
    """

    def __init__(self) -> None:
        self._log: list[LogRow] = []
        self._lock = asyncio.Lock()
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise BackendError("Backend is closed")

    def _current_revision(self) -> Revision:
        return self._log[-1].id if self._log else 0

    def _list_current(
        self,
        prefix: str,
        limit: int,
        include_deleted: bool,
        exact: bool = False,
    ) -> list[LogRow]:
        hierarchical = not exact and is_hierarchical(prefix)
        latest: dict[str, LogRow] = {}
        for row in self._log:
            matches = row.name.startswith(prefix) if hierarchical else row.name == prefix
            if matches:
                # Log is ordered by id, so the last match wins
                latest[row.name] = row

        rows = sorted(
            (row for row in latest.values() if include_deleted or not row.deleted),
            key=lambda row: row.id,
        )
        if limit > 0:
            rows = rows[:limit]
        return rows

    def _current_row(self, key: str) -> Optional[LogRow]:
        # Mutations always address one literal key, even when it ends in "/"
        rows = self._list_current(key, 1, False, exact=True)
        return rows[0] if rows else None

    def _append(
        self,
        name: str,
        created: bool,
        deleted: bool,
        create_revision: Revision,
        value: Optional[bytes],
        old_value: Optional[bytes],
    ) -> Revision:
        row = LogRow(
            id=self._current_revision() + 1,
            name=name,
            created=created,
            deleted=deleted,
            create_revision=create_revision,
            value=value,
            old_value=old_value,
        )
        self._log.append(row)
        return row.id

    async def size(self) -> int:
        self._check_open()
        return sum(
            len(row.name.encode("utf-8")) + len(row.value or b"") + len(row.old_value or b"")
            for row in self._log
        )

    async def current_revision(self) -> Revision:
        self._check_open()
        return self._current_revision()

    async def count(self, prefix: str) -> int:
        self._check_open()
        return len(self._list_current(prefix, -1, False))

    async def put(self, key: str, value: bytes) -> Revision:
        validate_mutation(key, value)
        async with self._lock:
            self._check_open()
            next_revision = self._current_revision() + 1
            current = self._current_row(key)
            if current is not None:
                logger.debug("Updating existing key", extra={"key": key})
                return self._append(
                    key, False, False, current.create_revision, bytes(value), current.value
                )
            logger.debug("Creating new key", extra={"key": key})
            return self._append(key, True, False, next_revision, bytes(value), None)

    async def list_current(
        self,
        prefix: str,
        limit: int = -1,
        include_deleted: bool = False,
    ) -> list[KeyValue]:
        self._check_open()
        return [row.to_key_value() for row in self._list_current(prefix, limit, include_deleted)]

    async def list_rows(self, prefix: str, limit: int = -1) -> list[LogRow]:
        """Like list_current(include_deleted=True) but returning full log rows."""
        self._check_open()
        return self._list_current(prefix, limit, True)

    async def delete(self, key: str) -> Revision:
        validate_mutation(key)
        async with self._lock:
            self._check_open()
            current = self._current_row(key)
            if current is None:
                logger.debug("Delete of absent key is a no-op", extra={"key": key})
                return self._current_revision()
            logger.debug("Writing tombstone", extra={"key": key})
            return self._append(key, False, True, 0, None, current.value)

    async def close(self) -> None:
        self._closed = True
        logger.debug("InMemoryBackend closed")

    # Testing helpers

    def get_log(self) -> list[LogRow]:
        """Get a copy of the full log (testing helper)."""
        return list(self._log)
