"""
revkv test suite.

This package contains:
- unit/: Backend engines, configuration and CLI tests
- integration/: HTTP gateway tests (in-process, in-memory backend)
"""
