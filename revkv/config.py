"""
Configuration management for revkv.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit REVKV_DB_PATH

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; they are part of the deployment contract
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    """Supported storage engines."""

    SQLITE = "sqlite"
    MEMORY = "memory"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Storage engine configuration.

    Attributes:
        backend: Which engine stores the revision log
        db_path: SQLite store file
        wal_mode: SQLite WAL mode enabled
        shared_cache: Open SQLite connections in shared-cache mode
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
        max_connections: Connection pool size
    """

    backend: BackendKind = BackendKind.SQLITE
    db_path: str = "./revkv.db"
    wal_mode: bool = True
    shared_cache: bool = False
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB
    max_connections: int = 8

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If REVKV_BACKEND names an unknown engine
        """
        backend_str = os.getenv("REVKV_BACKEND", "sqlite").lower()
        try:
            backend = BackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid REVKV_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            )

        return cls(
            backend=backend,
            db_path=os.getenv("REVKV_DB_PATH", "./revkv.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            shared_cache=_env_bool("SQLITE_SHARED_CACHE", "false"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
            max_connections=int(os.getenv("SQLITE_MAX_CONNECTIONS", "8")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class ServerConfig:
    """Complete revkv configuration.

    Attributes:
        storage: Storage engine configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.storage.backend == BackendKind.SQLITE and not self.storage.db_path:
            raise ValueError("REVKV_DB_PATH is required when REVKV_BACKEND=sqlite")
        if self.storage.max_connections < 1:
            raise ValueError("SQLITE_MAX_CONNECTIONS must be at least 1")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.storage.backend == BackendKind.SQLITE and not os.path.exists(self.storage.db_path):
            logger.warning(
                f"Store file does not exist: {self.storage.db_path}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Configuration loaded",
            extra={
                "backend": self.storage.backend.value,
                "db_path": self.storage.db_path
                if self.storage.backend == BackendKind.SQLITE
                else None,
                "wal_mode": self.storage.wal_mode,
                "shared_cache": self.storage.shared_cache,
                "max_connections": self.storage.max_connections,
                "log_level": self.observability.log_level,
            },
        )
