"""
Revisioned key-value backend abstraction for revkv.

This module provides a pluggable storage engine interface supporting:
- SQLite (persistent, recommended)
- In-memory (for testing)

Every mutation is appended to a single global log. The current value
of a key is derived by query from that log and never stored separately.

Invariants:
    - put() and delete() each append at most one row, atomically
    - Revisions are strictly increasing across all keys
    - get() at a past revision fails loudly until it is designed

How to change safely:
    - New engines must implement the Backend protocol
    - Run the shared contract tests against every engine
"""

from .base import (
    Backend,
    BackendError,
    KeyValue,
    LogRow,
    Revision,
    RevkvError,
    StoreIOError,
    UnsupportedOperationError,
    create_backend,
)
from .memory import InMemoryBackend
from .sqlite import SqliteBackend, SqlitePool, SqlitePoolOptions

__all__ = [
    # Protocol and types
    "Backend",
    "KeyValue",
    "LogRow",
    "Revision",
    # Errors
    "RevkvError",
    "BackendError",
    "StoreIOError",
    "UnsupportedOperationError",
    # Factory
    "create_backend",
    # Implementations
    "InMemoryBackend",
    "SqliteBackend",
    "SqlitePool",
    "SqlitePoolOptions",
]
