"""Unit tests for the in-memory store and the namespaced accessor."""

import asyncio
from datetime import UTC, datetime

import pytest

from approved_secrets.errors import StorageError
from approved_secrets.models import Request
from approved_secrets.storage import (
    InMemoryStorage,
    StorageAccessor,
    WriteConflictError,
    list_children,
)

NOW = datetime(2024, 1, 1, tzinfo=UTC)


def make_request(nonce: str = "n1") -> Request:
    return Request(
        role_name="k8s-admin",
        nonce=nonce,
        requester_id="alice",
        created_at=NOW,
        expires_at=NOW,
    )


@pytest.fixture
def accessor():
    return StorageAccessor(InMemoryStorage(), "request")


class TestListChildren:
    def test_folders_keep_trailing_slash(self):
        keys = ["request/a/1", "request/a/2", "request/b", "role/a"]
        assert list_children(keys, "request/") == ["a/", "b"]
        assert list_children(keys, "request/a/") == ["1", "2"]
        assert list_children(keys, "missing/") == []


class TestStorageAccessor:
    """Namespacing, serialization and versioned writes."""

    def test_keys_are_normalized(self, accessor):
        assert accessor.key("K8s-Admin", "/ABC/") == "request/k8s-admin/abc"

    @pytest.mark.asyncio
    async def test_put_get_list_delete(self, accessor):
        await accessor.put(make_request("n1"), "k8s-admin", "n1")
        await accessor.put(make_request("n2"), "k8s-admin", "n2")

        assert (await accessor.get(Request, "K8S-ADMIN", "n1")).nonce == "n1"
        assert await accessor.list() == ["k8s-admin"]
        assert await accessor.list("k8s-admin") == ["n1", "n2"]

        await accessor.delete("k8s-admin", "n1")
        await accessor.delete("k8s-admin", "n1")
        assert await accessor.get(Request, "k8s-admin", "n1") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry(self, accessor):
        await accessor.storage.put("request/k8s-admin/bad", b'{"nonce": 1}')
        with pytest.raises(StorageError):
            await accessor.get(Request, "k8s-admin", "bad")

    @pytest.mark.asyncio
    async def test_versioned_write_bumps_version(self, accessor):
        request = make_request()
        await accessor.put_versioned(request, "k8s-admin", "n1")
        assert request.version == 1

        stored = await accessor.get(Request, "k8s-admin", "n1")
        stored.add_approver("bob")
        await accessor.put_versioned(stored, "k8s-admin", "n1")
        assert (await accessor.get(Request, "k8s-admin", "n1")).version == 2

    @pytest.mark.asyncio
    async def test_stale_write_is_rejected(self, accessor):
        await accessor.put_versioned(make_request(), "k8s-admin", "n1")
        first = await accessor.get(Request, "k8s-admin", "n1")
        second = await accessor.get(Request, "k8s-admin", "n1")

        await accessor.put_versioned(first, "k8s-admin", "n1")
        with pytest.raises(WriteConflictError) as exc_info:
            await accessor.put_versioned(second, "k8s-admin", "n1")

        assert exc_info.value.expected == 1
        assert exc_info.value.found == 2

    @pytest.mark.asyncio
    async def test_write_after_delete_is_rejected(self, accessor):
        """A deleted request is not resurrected by a late writer."""
        await accessor.put_versioned(make_request(), "k8s-admin", "n1")
        stale = await accessor.get(Request, "k8s-admin", "n1")
        await accessor.delete("k8s-admin", "n1")

        with pytest.raises(WriteConflictError):
            await accessor.put_versioned(stale, "k8s-admin", "n1")
        assert await accessor.get(Request, "k8s-admin", "n1") is None

    @pytest.mark.asyncio
    async def test_replicas_without_shared_locks_conflict(self, accessor):
        """Two accessors over one store hold separate locks; the store decides."""
        other_replica = StorageAccessor(accessor.storage, "request")
        await accessor.put_versioned(make_request(), "k8s-admin", "n1")

        ours = await accessor.get(Request, "k8s-admin", "n1")
        theirs = await other_replica.get(Request, "k8s-admin", "n1")
        async with accessor.lock("k8s-admin", "n1"):
            async with other_replica.lock("k8s-admin", "n1"):
                theirs.add_approver("carol")
                await other_replica.put_versioned(theirs, "k8s-admin", "n1")

                ours.add_approver("bob")
                with pytest.raises(WriteConflictError):
                    await accessor.put_versioned(ours, "k8s-admin", "n1")

        assert ours.version == 1
        stored = await accessor.get(Request, "k8s-admin", "n1")
        assert stored.approver_ids == ["carol"]
        assert stored.version == 2


class TestConditionalWrite:
    """InMemoryStorage.put_if_version compares stored entity versions."""

    @pytest.mark.asyncio
    async def test_first_write_expects_zero(self):
        storage = InMemoryStorage()

        await storage.put_if_version("request/a/n1", b'{"version": 1}', 0)

        assert await storage.get("request/a/n1") == b'{"version": 1}'

    @pytest.mark.asyncio
    async def test_mismatch_keeps_stored_value(self):
        storage = InMemoryStorage()
        await storage.put("request/a/n1", b'{"version": 3}')

        with pytest.raises(WriteConflictError) as exc_info:
            await storage.put_if_version("request/a/n1", b'{"version": 2}', 1)

        assert exc_info.value.found == 3
        assert await storage.get("request/a/n1") == b'{"version": 3}'

    @pytest.mark.asyncio
    async def test_corrupt_entry(self):
        storage = InMemoryStorage()
        await storage.put("request/a/n1", b"[1, 2]")

        with pytest.raises(StorageError):
            await storage.put_if_version("request/a/n1", b'{"version": 1}', 0)


class TestKeyLocks:
    """Per-key locks serialize one key and leave others alone."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self, accessor):
        events = []

        async def hold(name: str):
            async with accessor.lock("k8s-admin", "n1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(hold("a"), hold("b"))

        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, accessor):
        async with accessor.lock("k8s-admin", "n1"):
            await asyncio.wait_for(self._acquire(accessor, "n2"), timeout=1)

    @pytest.mark.asyncio
    async def test_locks_are_released(self, accessor):
        async with accessor.lock("k8s-admin", "n1"):
            assert len(accessor._locks) == 1
        assert accessor._locks == {}

    @staticmethod
    async def _acquire(accessor: StorageAccessor, nonce: str) -> None:
        async with accessor.lock("k8s-admin", nonce):
            pass
