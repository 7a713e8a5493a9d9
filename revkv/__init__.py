"""
revkv - Revisioned key-value storage backend.

This package implements an etcd-style storage engine built on:
- An append-only revision log as the only storage structure
- SQLite (or memory) as the engine that holds the log
- A small async Backend protocol as the integration point

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │  Caller /   │────▶│   Backend   │────▶│  Transaction    │
    │ HTTP / CLI  │     │  protocol   │     │ (read + append) │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                                     ▼
                        ┌─────────────────────────────────────────┐
                        │   Revision log (one row per mutation)   │
                        └─────────────────────────────────────────┘

Invariants:
    - The log is the source of truth; rows are never updated in place
    - Revisions are global and strictly increasing
    - Current state is derived by query (max revision per key)
    - Point-in-time reads are refused, not approximated

How to change safely:
    - Keep the Backend protocol stable; it is the integration point
    - Any new engine must reproduce the visibility semantics exactly
"""

from ._version import __version__

__all__ = ["__version__"]
