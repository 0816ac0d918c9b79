"""
Kubernetes ConfigMap-backed storage.

All entries live in a single ConfigMap. ConfigMap data keys only allow
``[-._a-zA-Z0-9]``, so storage keys are base64url-encoded. Writes replace
the ConfigMap with the resourceVersion we read, so concurrent writers from
other replicas fail with 409 and are retried against fresh data. Conditional
writes re-check the stored entity version on every attempt, so a retry never
overwrites a generation another replica wrote in between.

The kubernetes client is synchronous; every API round trip runs in a worker
thread.
"""

import asyncio
import base64
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from approved_secrets.errors import StorageError

from .base import check_version, list_children

logger = logging.getLogger(__name__)

MAX_REPLACE_ATTEMPTS = 5


def _encode_key(key: str) -> str:
    return base64.urlsafe_b64encode(key.encode()).decode().rstrip("=")


def _decode_key(encoded: str) -> str:
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding).decode()


class ConfigMapStorage:
    """Storage implementation on top of one Kubernetes ConfigMap."""

    def __init__(
        self,
        name: str,
        namespace: str,
        k8s_client: client.ApiClient | None = None,
    ):
        """
        Initialize ConfigMap storage.

        Args:
            name: ConfigMap name
            namespace: ConfigMap namespace
            k8s_client: Optional Kubernetes API client
        """
        self.name = name
        self.namespace = namespace
        self.k8s_client = k8s_client
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    def _read(self) -> client.V1ConfigMap | None:
        try:
            return self.v1.read_namespaced_config_map(
                name=self.name, namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise StorageError(
                f"Failed to read ConfigMap {self.namespace}/{self.name}",
                reason=e.reason,
            ) from e

    def _mutate(
        self, key: str, value: str | None, expected_version: int | None = None
    ) -> None:
        """
        Set (or remove, when value is None) one encoded entry.

        Args:
            key: Storage key
            value: New value, or None to delete
            expected_version: Version the stored entity must still carry

        Raises:
            WriteConflictError: If the stored version differs from expected_version
            StorageError: If the API call fails or conflicts persist
        """
        encoded = _encode_key(key)

        for attempt in range(1, MAX_REPLACE_ATTEMPTS + 1):
            cm = self._read()
            if expected_version is not None:
                current = (cm.data or {}).get(encoded) if cm is not None else None
                check_version(key, current, expected_version)

            try:
                if cm is None:
                    if value is None:
                        return
                    self.v1.create_namespaced_config_map(
                        namespace=self.namespace,
                        body={
                            "metadata": {
                                "name": self.name,
                                "labels": {
                                    "app.kubernetes.io/name": "approved-secrets",
                                    "app.kubernetes.io/component": "storage",
                                },
                            },
                            "data": {encoded: value},
                        },
                    )
                    return

                data = dict(cm.data or {})
                if value is None:
                    if encoded not in data:
                        return
                    del data[encoded]
                else:
                    data[encoded] = value
                cm.data = data

                # Carries metadata.resource_version, so a stale write gets 409
                self.v1.replace_namespaced_config_map(
                    name=self.name, namespace=self.namespace, body=cm
                )
                return
            except ApiException as e:
                if e.status == 409 and attempt < MAX_REPLACE_ATTEMPTS:
                    logger.debug(
                        f"ConfigMap {self.namespace}/{self.name} changed "
                        f"concurrently, retrying (attempt {attempt})"
                    )
                    continue
                raise StorageError(
                    f"Failed to write ConfigMap {self.namespace}/{self.name}",
                    reason=e.reason,
                ) from e

    async def get(self, key: str) -> bytes | None:
        cm = await asyncio.to_thread(self._read)
        if cm is None or not cm.data:
            return None
        value = cm.data.get(_encode_key(key))
        return value.encode() if value is not None else None

    async def put(self, key: str, value: bytes) -> None:
        await asyncio.to_thread(self._mutate, key, value.decode())

    async def put_if_version(
        self, key: str, value: bytes, expected_version: int
    ) -> None:
        await asyncio.to_thread(self._mutate, key, value.decode(), expected_version)

    async def list(self, prefix: str) -> list[str]:
        cm = await asyncio.to_thread(self._read)
        if cm is None or not cm.data:
            return []
        return list_children((_decode_key(k) for k in cm.data), prefix)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._mutate, key, None)
