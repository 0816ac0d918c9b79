"""
Namespaced storage accessor with per-key locking.

The underlying store has no transactions, so every read-modify-write of a
single entity runs under an ``asyncio.Lock`` scoped to that entity's exact
key. Writes of versioned entities go through the store's conditional
write, which refuses to overwrite a newer generation. That check runs in
the store itself, so it also holds against writers in other replicas that
do not share our locks.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

import pydantic
from pydantic import BaseModel

from approved_secrets.errors import StorageError

from .base import Storage, WriteConflictError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class StorageAccessor:
    """
    JSON access to one namespace of the store.

    Subkeys are lowercased and joined below the namespace, so
    ``accessor.get(Request, "K8s-Admin", nonce)`` and
    ``accessor.list("k8s-admin")`` address the same entries.
    """

    def __init__(self, storage: Storage, namespace: str):
        """
        Initialize accessor.

        Args:
            storage: Backing key-value store
            namespace: Top-level key prefix (e.g. ``request``)
        """
        self.storage = storage
        self.namespace = namespace
        self._locks: dict[str, _KeyLock] = {}

    def key(self, *subkeys: str) -> str:
        """Build the normalized storage key for ``subkeys``."""
        parts = [self.namespace]
        parts.extend(s.strip("/").lower() for s in subkeys if s)
        return "/".join(parts)

    @asynccontextmanager
    async def lock(self, *subkeys: str) -> AsyncIterator[None]:
        """
        Hold the lock of exactly one key.

        Locks are not reentrant; accessor reads and writes inside the block
        do not take the lock themselves.
        """
        key = self.key(*subkeys)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[key]

    async def get(self, model: type[ModelT], *subkeys: str) -> ModelT | None:
        """Load and decode one entry, or None if absent."""
        key = self.key(*subkeys)
        raw = await self.storage.get(key)
        if raw is None:
            return None

        try:
            return model.model_validate_json(raw)
        except pydantic.ValidationError as e:
            logger.error(f"Corrupt storage entry at {key}: {e.error_count()} errors")
            raise StorageError(f"corrupt entry at {key}") from e

    async def put(self, entity: BaseModel, *subkeys: str) -> None:
        """Encode and store one entry."""
        key = self.key(*subkeys)
        await self.storage.put(key, entity.model_dump_json().encode())

    async def put_versioned(self, entity: BaseModel, *subkeys: str) -> None:
        """
        Store an entity carrying a ``version`` field, bumping its generation.

        Raises:
            WriteConflictError: If the stored generation is not the one we read
        """
        key = self.key(*subkeys)
        expected = entity.version  # type: ignore[attr-defined]

        entity.version = expected + 1  # type: ignore[attr-defined]
        try:
            await self.storage.put_if_version(
                key, entity.model_dump_json().encode(), expected
            )
        except WriteConflictError:
            entity.version = expected  # type: ignore[attr-defined]
            raise

    async def list(self, *subkeys: str) -> list[str]:
        """List the immediate children below ``subkeys`` (folders without ``/``)."""
        prefix = self.key(*subkeys) + "/"
        return [child.rstrip("/") for child in await self.storage.list(prefix)]

    async def delete(self, *subkeys: str) -> None:
        """Delete one entry; deleting an absent key is a no-op."""
        await self.storage.delete(self.key(*subkeys))
