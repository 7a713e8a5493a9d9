"""
CLI tools for revkv administration.

This module provides command-line tools for:
- kv: Inspect and modify a SQLite store file directly

Invariants:
    - Tools work offline (no running gateway required)
    - A store file is only ever created by an explicit init
"""

from .kv_cli import KvCLI

__all__ = ["KvCLI"]
