"""
Downstream secret source.

The issuance engine hands a fully rendered request to a downstream source and
gets back the secret payload plus whatever identifiers are needed to reverse
the grant later. The Vault implementation reads or writes a logical path, or
for ``vault-token`` roles mints a token scoped to the requester's alias.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from approved_secrets.constants import METHOD_GET, ROLE_SECRET_TYPE_VAULT_TOKEN
from approved_secrets.errors import NotFoundError, ValidationError
from approved_secrets.models import DownstreamResult
from approved_secrets.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)


class DownstreamSecretSource(Protocol):
    """Source that releases secrets and reverses released grants."""

    async def invoke(
        self,
        path: str,
        method: str,
        data: dict[str, Any] | None,
        requester: str,
        idempotency_key: str,
        secret_type: str = "",
    ) -> DownstreamResult: ...

    async def revoke(self, correlation: dict[str, Any]) -> None: ...


class VaultDownstreamSource:
    """Releases secrets through the Vault HTTP API using the service token."""

    def __init__(self, client_provider: Callable[[], Awaitable[VaultClient]]):
        self._client_provider = client_provider

    async def invoke(
        self,
        path: str,
        method: str,
        data: dict[str, Any] | None,
        requester: str,
        idempotency_key: str,
        secret_type: str = "",
    ) -> DownstreamResult:
        """
        Release one secret.

        Args:
            path: Logical Vault path of the secret
            method: GET or POST
            data: Request body for POST
            requester: Identity the secret is released to
            idempotency_key: ``<role>/<nonce>`` of the request being issued
            secret_type: Role secret type; ``vault-token`` mints a scoped token

        Returns:
            Secret payload and the correlation needed to revoke it

        Raises:
            NotFoundError: If nothing is stored at ``path``
            ValidationError: If a vault-token role carries no policies
            VaultAPIError: On any Vault failure
        """
        client = await self._client_provider()

        if secret_type == ROLE_SECRET_TYPE_VAULT_TOKEN:
            if not data or "policies" not in data:
                raise ValidationError(
                    "vault-token roles need policies", field="secret_data"
                )
            response = await client.create_scoped_token(
                data, requester, role_suffix=idempotency_key.replace("/", "-")
            )
            auth = response["auth"]
            logger.info(
                f"Created scoped token for {requester} ({idempotency_key})",
                extra={"identity": requester},
            )
            return DownstreamResult(
                payload=auth, correlation={"accessor": auth.get("accessor", "")}
            )

        if method == METHOD_GET:
            response = await client.read(path)
            if response is None:
                raise NotFoundError("secret", path)
        else:
            response = await client.write(path, data or {})

        response = response or {}
        correlation: dict[str, Any] = {}
        if response.get("lease_id"):
            correlation["lease_id"] = response["lease_id"]

        auth = response.get("auth")
        if auth:
            if auth.get("accessor"):
                correlation["accessor"] = auth["accessor"]
            payload = auth
        else:
            payload = response.get("data") or {}

        logger.info(
            f"Released {method} {path} for {requester} ({idempotency_key})",
            extra={"vault_path": path, "identity": requester},
        )
        return DownstreamResult(payload=payload, correlation=correlation)

    async def revoke(self, correlation: dict[str, Any]) -> None:
        """Revoke the token and/or lease recorded at issue time."""
        if not correlation:
            return

        client = await self._client_provider()
        if correlation.get("accessor"):
            await client.revoke_accessor(correlation["accessor"])
        if correlation.get("lease_id"):
            await client.revoke_lease(correlation["lease_id"])
