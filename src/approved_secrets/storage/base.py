"""
Key-value storage protocol.

The host owns persistence and offers get/put/list/delete on string keys, plus
one conditional write: ``put_if_version`` stores a JSON entity only if the
stored entity still carries the ``version`` the caller read. Keys are
hierarchical, ``/`` separated paths. Listing a prefix returns its immediate
children, with a trailing ``/`` on children that have descendants of their
own.
"""

import asyncio
import json
from collections.abc import Iterable
from typing import Protocol

from approved_secrets.errors import StorageError


class WriteConflictError(Exception):
    """Stored generation changed between our read and our write."""

    def __init__(self, key: str, expected: int, found: int | None):
        super().__init__(
            f"write conflict on {key}: expected version {expected}, found {found}"
        )
        self.key = key
        self.expected = expected
        self.found = found


class Storage(Protocol):
    """Minimal durable key-value store."""

    async def get(self, key: str) -> bytes | None: ...

    async def put(self, key: str, value: bytes) -> None: ...

    async def put_if_version(
        self, key: str, value: bytes, expected_version: int
    ) -> None: ...

    async def list(self, prefix: str) -> list[str]: ...

    async def delete(self, key: str) -> None: ...


def stored_version(key: str, raw: bytes | str | None) -> int | None:
    """
    Read the ``version`` field of a stored JSON entity.

    Returns:
        The stored version, 0 for entities without one, None if absent

    Raises:
        StorageError: If the entry is not a JSON object
    """
    if raw is None:
        return None
    try:
        return json.loads(raw).get("version", 0)
    except (json.JSONDecodeError, AttributeError) as e:
        raise StorageError(f"corrupt entry at {key}") from e


def check_version(key: str, raw: bytes | str | None, expected: int) -> None:
    """
    Compare the stored generation of ``key`` with the one a writer read.

    A missing entry only matches ``expected == 0``; a vanished entry with a
    higher expectation was deleted under the writer.

    Raises:
        WriteConflictError: If the generations differ
    """
    found = stored_version(key, raw)
    if found != expected and not (found is None and expected == 0):
        raise WriteConflictError(key, expected, found)


def list_children(keys: Iterable[str], prefix: str) -> list[str]:
    """
    Compute the immediate children of ``prefix`` among ``keys``.

    Args:
        keys: All keys present in the store
        prefix: Folder prefix, normally ending in ``/``

    Returns:
        Sorted child names; folders keep a trailing ``/``
    """
    children: set[str] = set()
    for key in keys:
        if not key.startswith(prefix):
            continue
        remainder = key[len(prefix) :]
        if not remainder:
            continue
        head, sep, _ = remainder.partition("/")
        children.add(head + sep)
    return sorted(children)


class InMemoryStorage:
    """Process-local storage, used for tests and single-instance deployments."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        async with self._lock:
            self._data[key] = value

    async def put_if_version(
        self, key: str, value: bytes, expected_version: int
    ) -> None:
        async with self._lock:
            check_version(key, self._data.get(key), expected_version)
            self._data[key] = value

    async def list(self, prefix: str) -> list[str]:
        async with self._lock:
            return list_children(self._data.keys(), prefix)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)
