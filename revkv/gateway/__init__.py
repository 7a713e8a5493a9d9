"""
HTTP gateway for revkv.

Exposes the Backend protocol as a small JSON API so that non-Python
callers and operators can read and write the store.

Invariants:
    - Endpoints are thin wrappers over Backend operations
    - Values travel base64-encoded; keys travel as plain strings
    - Point-in-time reads answer 501, never a current value
"""

from .app import create_app
from .config import Settings

__all__ = ["create_app", "Settings"]
