"""
Key-value CLI tool for revkv.

This tool operates directly on a SQLite store file:
- init: Create and initialize a new store
- put / get / delete: Single-key operations
- list / count: Prefix operations
- status: Current revision and store size

Usage:
    revkv --db state.db init
    revkv --db state.db put /root/health OK
    revkv --db state.db list /root/ --limit 10 --json
    revkv --db state.db delete /root/health

Invariants:
    - init never reinitializes an existing file
    - Other commands never create a store implicitly
    - Exit codes: 0 ok, 1 key not found, 2 backend or store error
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from pathlib import Path
from typing import Any

from ..backend import (
    Backend,
    KeyValue,
    RevkvError,
    SqliteBackend,
    SqlitePool,
    SqlitePoolOptions,
)
from ..config import StorageConfig

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_ERROR = 2


def kv_to_dict(kv: KeyValue) -> dict[str, Any]:
    """Convert a KeyValue to a JSON-safe dictionary (value base64-encoded)."""
    return {
        "key": kv.key,
        "create_revision": kv.create_revision,
        "mod_revision": kv.mod_revision,
        "value": base64.b64encode(kv.value).decode("ascii") if kv.value is not None else None,
        "lease": kv.lease,
    }


def format_kv(kv: KeyValue) -> str:
    """Human-readable single-line rendering of a KeyValue."""
    if kv.value is None:
        value = "<deleted>"
    else:
        value = kv.value.decode("utf-8", errors="backslashreplace")
    return f"{kv.key}\t{value}\t(create={kv.create_revision} mod={kv.mod_revision})"


class KvCLI:
    """CLI commands over a Backend.

    Each command returns the text to print and an exit code.

    Example:
        >>> cli = KvCLI(backend, as_json=False)
        >>> await cli.put("/root/health", "OK")
        ('1', 0)
    """

    def __init__(self, backend: Backend, as_json: bool = False) -> None:
        self.backend = backend
        self.as_json = as_json

    def _render(self, data: dict[str, Any], text: str) -> str:
        return json.dumps(data, sort_keys=True) if self.as_json else text

    async def init(self, path: str) -> tuple[str, int]:
        revision = await self.backend.current_revision()
        data = {"path": path, "revision": revision}
        return self._render(data, f"Initialized store at {path}"), EXIT_OK

    async def put(self, key: str, value: str) -> tuple[str, int]:
        revision = await self.backend.put(key, value.encode("utf-8"))
        return self._render({"revision": revision}, str(revision)), EXIT_OK

    async def get(self, key: str) -> tuple[str, int]:
        kv = await self.backend.get(key)
        if kv is None:
            return self._render({"kv": None}, f"Key not found: {key}"), EXIT_NOT_FOUND
        return self._render({"kv": kv_to_dict(kv)}, format_kv(kv)), EXIT_OK

    async def list_keys(self, prefix: str, limit: int, include_deleted: bool) -> tuple[str, int]:
        kvs = await self.backend.list_current(prefix, limit, include_deleted)
        data = {"kvs": [kv_to_dict(kv) for kv in kvs], "count": len(kvs)}
        return self._render(data, "\n".join(format_kv(kv) for kv in kvs)), EXIT_OK

    async def count(self, prefix: str) -> tuple[str, int]:
        count = await self.backend.count(prefix)
        return self._render({"count": count}, str(count)), EXIT_OK

    async def delete(self, key: str) -> tuple[str, int]:
        revision = await self.backend.delete(key)
        return self._render({"revision": revision}, str(revision)), EXIT_OK

    async def status(self) -> tuple[str, int]:
        revision = await self.backend.current_revision()
        size = await self.backend.size()
        data = {"revision": revision, "size": size}
        return self._render(data, f"revision={revision} size={size}"), EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="revkv",
        description="Revisioned key-value store administration",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="Store file (default: $REVKV_DB_PATH or ./revkv.db)",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create and initialize a new store")
    subparsers.add_parser("status", help="Show current revision and size")

    put_parser = subparsers.add_parser("put", help="Create or update a key")
    put_parser.add_argument("key")
    put_parser.add_argument("value")

    get_parser = subparsers.add_parser("get", help="Get the current value of a key")
    get_parser.add_argument("key")

    delete_parser = subparsers.add_parser("delete", help="Delete a key")
    delete_parser.add_argument("key")

    list_parser = subparsers.add_parser("list", help="List current keys under a prefix")
    list_parser.add_argument("prefix")
    list_parser.add_argument("--limit", type=int, default=-1, help="Maximum rows (<= 0 = all)")
    list_parser.add_argument(
        "--include-deleted",
        action="store_true",
        help="Include keys whose current row is a tombstone",
    )

    count_parser = subparsers.add_parser("count", help="Count live keys under a prefix")
    count_parser.add_argument("prefix")

    return parser


async def _open_backend(args: argparse.Namespace) -> Backend:
    storage = StorageConfig.from_env()
    path = Path(args.db or storage.db_path)
    options = SqlitePoolOptions.from_storage_config(storage)

    if args.command == "init":
        return await SqliteBackend.create(path, options)
    if not path.exists():
        raise FileNotFoundError(f"Store not found: {path} (run 'revkv init' first)")
    return await SqliteBackend.with_pool(SqlitePool(path, options))


async def run(args: argparse.Namespace) -> int:
    """Execute a parsed command and print its output.

    Returns:
        Process exit code
    """
    try:
        backend = await _open_backend(args)
    except (RevkvError, FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    cli = KvCLI(backend, as_json=args.json)
    try:
        if args.command == "init":
            output, code = await cli.init(args.db or StorageConfig.from_env().db_path)
        elif args.command == "put":
            output, code = await cli.put(args.key, args.value)
        elif args.command == "get":
            output, code = await cli.get(args.key)
        elif args.command == "delete":
            output, code = await cli.delete(args.key)
        elif args.command == "list":
            output, code = await cli.list_keys(args.prefix, args.limit, args.include_deleted)
        elif args.command == "count":
            output, code = await cli.count(args.prefix)
        else:
            output, code = await cli.status()
    except (RevkvError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        await backend.close()

    if output:
        print(output)
    return code


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
