"""
Contract tests shared by every backend engine.

Tests cover:
- Revision ordering across keys
- Put/get round trips and create/mod revisions
- Delete semantics and idempotence
- Hierarchical prefix listing and counting
- Point-in-time read refusal
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from revkv.backend import (
    Backend,
    InMemoryBackend,
    SqliteBackend,
    UnsupportedOperationError,
)


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def backend(request, data_dir):
    """Create an empty backend of each engine."""
    if request.param == "sqlite":
        store = await SqliteBackend.create(Path(data_dir) / "state.db")
    else:
        store = InMemoryBackend()
    yield store
    await store.close()


class TestRevisions:
    """Tests for global revision numbering."""

    @pytest.mark.asyncio
    async def test_implements_protocol(self, backend):
        """Every engine satisfies the Backend protocol."""
        assert isinstance(backend, Backend)

    @pytest.mark.asyncio
    async def test_empty_store_revision_is_zero(self, backend):
        """Empty log reports revision 0."""
        assert await backend.current_revision() == 0

    @pytest.mark.asyncio
    async def test_first_mutation_is_revision_one(self, backend):
        """The very first put returns revision 1."""
        assert await backend.put("/a", b"1") == 1
        assert await backend.current_revision() == 1

    @pytest.mark.asyncio
    async def test_revisions_increase_across_keys(self, backend):
        """Revisions are a single counter shared by all keys."""
        revisions = [
            await backend.put("/a", b"1"),
            await backend.put("/b", b"1"),
            await backend.put("/a", b"2"),
            await backend.delete("/b"),
            await backend.put("/c", b"1"),
        ]
        assert revisions == [1, 2, 3, 4, 5]


class TestPutGet:
    """Tests for put and get."""

    @pytest.mark.asyncio
    async def test_get_absent_key(self, backend):
        """Get on an empty store returns None."""
        assert await backend.get("/k") is None

    @pytest.mark.asyncio
    async def test_round_trip(self, backend):
        """Put then get returns the stored value."""
        await backend.put("/k", b"OK")

        kv = await backend.get("/k")
        assert kv is not None
        assert kv.key == "/k"
        assert kv.value == b"OK"
        assert kv.lease is None

    @pytest.mark.asyncio
    async def test_update_preserves_create_revision(self, backend):
        """Update keeps create_revision and advances mod_revision."""
        assert await backend.put("/k", b"OK") == 1
        kv = await backend.get("/k")
        assert (kv.create_revision, kv.mod_revision) == (1, 1)

        assert await backend.put("/k", b"NO") == 2
        kv = await backend.get("/k")
        assert kv.value == b"NO"
        assert (kv.create_revision, kv.mod_revision) == (1, 2)

    @pytest.mark.asyncio
    async def test_create_revision_is_own_revision(self, backend):
        """A new key's create_revision equals the revision that created it."""
        await backend.put("/a", b"1")
        await backend.put("/a", b"2")
        revision = await backend.put("/b", b"1")

        kv = await backend.get("/b")
        assert kv.create_revision == revision == 3

    @pytest.mark.asyncio
    async def test_get_exact_match_only(self, backend):
        """Get without a trailing separator never matches children."""
        await backend.put("/root/health", b"OK")

        assert await backend.get("/root") is None
        assert await backend.get("/root/h") is None

    @pytest.mark.asyncio
    async def test_empty_value_is_stored(self, backend):
        """An empty payload is a value, not a tombstone."""
        await backend.put("/k", b"")

        kv = await backend.get("/k")
        assert kv is not None
        assert kv.value == b""

    @pytest.mark.asyncio
    async def test_put_rejects_non_bytes(self, backend):
        """Values must be bytes."""
        with pytest.raises(ValueError, match="value must be bytes"):
            await backend.put("/k", "text")

    @pytest.mark.asyncio
    async def test_put_rejects_empty_key(self, backend):
        """Keys must be non-empty."""
        with pytest.raises(ValueError, match="key must be"):
            await backend.put("", b"OK")
        assert await backend.current_revision() == 0

    @pytest.mark.asyncio
    async def test_get_at_revision_is_unsupported(self, backend):
        """Point-in-time reads fail loudly instead of returning current state."""
        await backend.put("/k", b"OK")

        with pytest.raises(UnsupportedOperationError):
            await backend.get("/k", 1)
        with pytest.raises(NotImplementedError):
            await backend.get("/k", revision=0)


class TestDelete:
    """Tests for delete."""

    @pytest.mark.asyncio
    async def test_delete_then_get(self, backend):
        """Deleted key reads as absent and stops counting."""
        await backend.put("/k", b"OK")
        assert await backend.count("/k") == 1

        assert await backend.delete("/k") == 2
        assert await backend.get("/k") is None
        assert await backend.count("/k") == 0

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, backend):
        """Repeated deletes return the unchanged current revision."""
        await backend.put("/k", b"OK")
        assert await backend.delete("/k") == 2
        assert await backend.delete("/k") == 2
        assert await backend.current_revision() == 2

    @pytest.mark.asyncio
    async def test_delete_absent_key_on_empty_store(self, backend):
        """Deleting from an empty store returns revision 0."""
        assert await backend.delete("/missing") == 0
        assert await backend.current_revision() == 0

    @pytest.mark.asyncio
    async def test_recreate_after_delete(self, backend):
        """A key put after its tombstone gets a fresh create_revision."""
        await backend.put("/k", b"OK")
        await backend.delete("/k")
        assert await backend.put("/k", b"AGAIN") == 3

        kv = await backend.get("/k")
        assert kv.value == b"AGAIN"
        assert (kv.create_revision, kv.mod_revision) == (3, 3)

    @pytest.mark.asyncio
    async def test_delete_does_not_cascade(self, backend):
        """Deleting a directory-like name leaves its children live."""
        await backend.put("/root/health", b"OK")
        await backend.put("/root/status", b"OK")

        assert await backend.delete("/root") == 2
        assert await backend.delete("/root/") == 2
        assert await backend.count("/root/") == 2


class TestListCurrent:
    """Tests for the visibility query."""

    @pytest.mark.asyncio
    async def test_hierarchical_listing(self, backend):
        """Trailing separator lists every child ordered by revision."""
        await backend.put("/root/health", b"OK")
        await backend.put("/root/status", b"OK")
        await backend.put("/other/key", b"OK")

        kvs = await backend.list_current("/root/", -1, False)
        assert [kv.key for kv in kvs] == ["/root/health", "/root/status"]
        assert await backend.count("/root/") == 2

    @pytest.mark.asyncio
    async def test_limit_returns_earliest(self, backend):
        """Positive limit caps the result after ordering."""
        await backend.put("/root/health", b"OK")
        await backend.put("/root/status", b"OK")

        kvs = await backend.list_current("/root/", 1, False)
        assert [kv.key for kv in kvs] == ["/root/health"]

    @pytest.mark.asyncio
    async def test_non_positive_limit_is_unbounded(self, backend):
        """Zero and negative limits return everything."""
        for i in range(3):
            await backend.put(f"/root/{i}", b"OK")

        assert len(await backend.list_current("/root/", 0)) == 3
        assert len(await backend.list_current("/root/", -5)) == 3

    @pytest.mark.asyncio
    async def test_ordering_follows_latest_revision(self, backend):
        """An updated key moves after keys modified earlier."""
        await backend.put("/root/a", b"1")
        await backend.put("/root/b", b"1")
        await backend.put("/root/a", b"2")

        kvs = await backend.list_current("/root/")
        assert [(kv.key, kv.mod_revision) for kv in kvs] == [("/root/b", 2), ("/root/a", 3)]

    @pytest.mark.asyncio
    async def test_prefix_does_not_match_siblings(self, backend):
        """'/root/' does not match '/root' or '/rootx/...'."""
        await backend.put("/root", b"OK")
        await backend.put("/rootx/a", b"OK")
        await backend.put("/root0", b"OK")
        await backend.put("/root/a", b"OK")

        kvs = await backend.list_current("/root/")
        assert [kv.key for kv in kvs] == ["/root/a"]

    @pytest.mark.asyncio
    async def test_include_deleted(self, backend):
        """Tombstoned keys are returned only when requested."""
        await backend.put("/root/a", b"OK")
        await backend.put("/root/b", b"OK")
        await backend.delete("/root/a")

        live = await backend.list_current("/root/", -1, False)
        assert [kv.key for kv in live] == ["/root/b"]

        everything = await backend.list_current("/root/", -1, True)
        assert [kv.key for kv in everything] == ["/root/b", "/root/a"]
        tombstone = everything[1]
        assert tombstone.value is None
        assert tombstone.mod_revision == 3
        assert tombstone.create_revision == 0

    @pytest.mark.asyncio
    async def test_exact_prefix_lists_single_key(self, backend):
        """Without separator list_current is an exact lookup."""
        await backend.put("/root/a", b"OK")
        await backend.put("/root/ab", b"OK")

        kvs = await backend.list_current("/root/a")
        assert [kv.key for kv in kvs] == ["/root/a"]

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, backend):
        """'%', '_' and letter case in keys are matched literally."""
        await backend.put("/a%", b"percent")
        await backend.put("/abc", b"plain")
        await backend.put("/a_c", b"underscore")

        assert (await backend.get("/a%")).value == b"percent"
        assert (await backend.get("/a_c")).value == b"underscore"
        assert await backend.get("/A%") is None
        assert await backend.get("/ABC") is None
        assert await backend.count("/a_c") == 1

    @pytest.mark.asyncio
    async def test_update_does_not_change_count(self, backend):
        """Updating a child advances the revision but not the count."""
        await backend.put("/root/health", b"OK")
        await backend.put("/root/status", b"OK")

        assert await backend.put("/root/health", b"OK") == 3
        assert await backend.count("/root/") == 2
        assert await backend.current_revision() == 3


class TestScenario:
    """End-to-end mutation sequence."""

    @pytest.mark.asyncio
    async def test_list_two(self, backend):
        """Two children under one prefix through their full lifecycle."""
        key_1 = "/root/health"
        key_2 = "/root/status"
        value = b"OK"

        assert await backend.put(key_1, value) == 1
        assert await backend.put(key_2, value) == 2
        assert await backend.count("/root/") == 2
        assert len(await backend.list_current("/root/", -1, False)) == 2
        assert len(await backend.list_current("/root/", 1, False)) == 1

        assert await backend.put(key_1, value) == 3
        assert await backend.put(key_2, value) == 4
        assert await backend.count("/root/") == 2

        # Not a key: nothing was ever written under the literal name
        assert await backend.delete("/root") == 4

        assert await backend.delete(key_1) == 5
        assert await backend.delete(key_1) == 5
        assert await backend.count("/root/") == 1
        assert len(await backend.list_current("/root/", -1, False)) == 1

        assert await backend.delete(key_2) == 6
        assert await backend.delete(key_2) == 6
        assert await backend.count("/root/") == 0
        assert await backend.list_current("/root/", -1, False) == []

    @pytest.mark.asyncio
    async def test_single_key_lifecycle(self, backend):
        """One key created, updated, deleted and deleted again."""
        key = "/app/config"

        assert await backend.get(key) is None
        assert await backend.put(key, b"OK") == 1
        assert await backend.count(key) == 1

        assert await backend.put(key, b"NOT OKAY") == 2
        assert await backend.count(key) == 1
        kv = await backend.get(key)
        assert kv.value == b"NOT OKAY"
        assert (kv.create_revision, kv.mod_revision) == (1, 2)

        assert await backend.delete(key) == 3
        assert await backend.get(key) is None
        assert await backend.delete(key) == 3
        assert await backend.count(key) == 0
