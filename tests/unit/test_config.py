"""
Unit tests for environment configuration.
"""

import logging

import pytest

from revkv.backend import InMemoryBackend, SqliteBackend, create_backend
from revkv.config import BackendKind, ServerConfig, StorageConfig
from revkv.gateway import Settings
from revkv.main import setup_logging

ENV_VARS = (
    "REVKV_BACKEND",
    "REVKV_DB_PATH",
    "SQLITE_WAL_MODE",
    "SQLITE_SHARED_CACHE",
    "SQLITE_BUSY_TIMEOUT_MS",
    "SQLITE_CACHE_SIZE",
    "SQLITE_MAX_CONNECTIONS",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestStorageConfig:
    """Tests for StorageConfig.from_env."""

    def test_defaults(self):
        storage = StorageConfig.from_env()

        assert storage.backend == BackendKind.SQLITE
        assert storage.db_path == "./revkv.db"
        assert storage.wal_mode is True
        assert storage.shared_cache is False
        assert storage.max_connections == 8

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("REVKV_BACKEND", "MEMORY")
        monkeypatch.setenv("REVKV_DB_PATH", "/tmp/other.db")
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("SQLITE_SHARED_CACHE", "true")
        monkeypatch.setenv("SQLITE_BUSY_TIMEOUT_MS", "250")
        monkeypatch.setenv("SQLITE_MAX_CONNECTIONS", "2")

        storage = StorageConfig.from_env()

        assert storage.backend == BackendKind.MEMORY
        assert storage.db_path == "/tmp/other.db"
        assert storage.wal_mode is False
        assert storage.shared_cache is True
        assert storage.busy_timeout_ms == 250
        assert storage.max_connections == 2

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("REVKV_BACKEND", "postgres")

        with pytest.raises(ValueError, match="Invalid REVKV_BACKEND"):
            StorageConfig.from_env()


class TestServerConfig:
    """Tests for ServerConfig validation."""

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ValueError, match="Invalid LOG_FORMAT"):
            ServerConfig.from_env()

    def test_invalid_pool_size(self, monkeypatch):
        monkeypatch.setenv("SQLITE_MAX_CONNECTIONS", "0")

        with pytest.raises(ValueError, match="SQLITE_MAX_CONNECTIONS"):
            ServerConfig.from_env()

    def test_empty_db_path(self, monkeypatch):
        monkeypatch.setenv("REVKV_DB_PATH", "")

        with pytest.raises(ValueError, match="REVKV_DB_PATH"):
            ServerConfig.from_env()

    def test_memory_backend_ignores_db_path(self, monkeypatch):
        monkeypatch.setenv("REVKV_BACKEND", "memory")
        monkeypatch.setenv("REVKV_DB_PATH", "")

        config = ServerConfig.from_env()
        assert config.storage.backend == BackendKind.MEMORY


class TestCreateBackend:
    """Tests for the backend factory."""

    @pytest.mark.asyncio
    async def test_memory(self):
        config = ServerConfig(storage=StorageConfig(backend=BackendKind.MEMORY))

        backend = await create_backend(config)
        try:
            assert isinstance(backend, InMemoryBackend)
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_sqlite_creates_then_reopens(self, tmp_path):
        """A missing store file is created, an existing one is reopened."""
        config = ServerConfig(storage=StorageConfig(db_path=str(tmp_path / "state.db")))

        first = await create_backend(config)
        try:
            assert isinstance(first, SqliteBackend)
            await first.put("/k", b"OK")
        finally:
            await first.close()

        second = await create_backend(config)
        try:
            assert await second.current_revision() == 1
        finally:
            await second.close()


class TestSetupLogging:
    """Tests for root logger configuration."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self, monkeypatch):
        monkeypatch.setenv("REVKV_BACKEND", "memory")
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        setup_logging(ServerConfig.from_env())

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert type(root.handlers[0].formatter).__name__ == "JSONFormatter"

    def test_text_format(self):
        setup_logging(ServerConfig(storage=StorageConfig(backend=BackendKind.MEMORY)))

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert type(root.handlers[0].formatter) is logging.Formatter


class TestGatewaySettings:
    """Tests for gateway settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REVKV_GATEWAY_PORT", raising=False)
        assert Settings().port == 2379

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("REVKV_GATEWAY_PORT", "8080")
        monkeypatch.setenv("REVKV_GATEWAY_DEFAULT_LIST_LIMIT", "50")

        settings = Settings()
        assert settings.port == 8080
        assert settings.default_list_limit == 50
