"""
Vault HTTP API client.

This module provides the small slice of the Vault API the backend needs:
- Generic logical read/write/delete of secret paths
- Service identity token management (create-orphan, renew-self)
- Identity lookups (token accessor, entity, group) for caller resolution
- Scoped, single-use token creation on behalf of a requester
- Revocation of issued tokens and leases
"""

import logging
from typing import Any

import aiobreaker
import httpx

from approved_secrets.constants import SCOPED_TOKEN_ROLE_PREFIX
from approved_secrets.errors import VaultAPIError

from .circuit_breaker import DownstreamCircuitBreaker

logger = logging.getLogger(__name__)


class VaultClient:
    """
    Async client for the Vault HTTP API.

    Transport failures and 5xx responses count against the circuit breaker;
    4xx responses are caller errors and do not.
    """

    def __init__(
        self,
        vault_addr: str,
        token: str,
        timeout: int = 30,
        verify_ssl: bool = True,
        circuit_breaker: DownstreamCircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize Vault client.

        Args:
            vault_addr: Base URL of the Vault server
            token: Token sent as X-Vault-Token
            timeout: Request timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            circuit_breaker: Optional breaker shared by clients of one server
            transport: Optional httpx transport (used by tests)
        """
        self.vault_addr = vault_addr.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.circuit_breaker = circuit_breaker
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client (lazy initialization)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.vault_addr}/v1/",
                verify=self.verify_ssl,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    def with_token(self, token: str) -> "VaultClient":
        """Return a client for the same server acting with another token."""
        clone = VaultClient(
            self.vault_addr,
            token,
            timeout=self.timeout,
            verify_ssl=self.verify_ssl,
            circuit_breaker=self.circuit_breaker,
            transport=self._transport,
        )
        clone._client = self._get_client()
        return clone

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "VaultClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _send(
        self, method: str, path: str, json: dict[str, Any] | None
    ) -> httpx.Response:
        client = self._get_client()
        response = await client.request(
            method,
            path.lstrip("/"),
            json=json,
            headers={"X-Vault-Token": self.token},
        )
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _make_request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """
        Make an authenticated request to the Vault API.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, LIST)
            path: API path relative to /v1/
            json: JSON request body

        Returns:
            Decoded response body, or None for 404 and empty responses

        Raises:
            VaultAPIError: On API errors, transport errors or an open circuit
        """
        try:
            if self.circuit_breaker:
                response = await self.circuit_breaker.call(
                    self._send, method, path, json
                )
            else:
                response = await self._send(method, path, json)
        except aiobreaker.CircuitBreakerError as e:
            raise VaultAPIError("circuit breaker open", path=path, cause=e) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Vault request failed: {method} {path}",
                extra={"vault_path": path, "http_status": e.response.status_code},
            )
            raise VaultAPIError(
                "request failed",
                upstream_status=e.response.status_code,
                path=path,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                f"Vault request failed: {method} {path} - {type(e).__name__}",
                extra={"vault_path": path},
            )
            raise VaultAPIError(
                f"request failed: {type(e).__name__}", path=path, cause=e
            ) from e

        if response.status_code == 404 and method == "GET":
            return None

        if response.status_code >= 400:
            # Vault error bodies carry {"errors": [...]} and never secret data
            errors = _error_messages(response)
            logger.warning(
                f"Vault rejected {method} {path}: {errors}",
                extra={"vault_path": path, "http_status": response.status_code},
            )
            raise VaultAPIError(
                "; ".join(errors) or "request rejected",
                upstream_status=response.status_code,
                path=path,
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def read(self, path: str) -> dict[str, Any] | None:
        """Read a logical path; None if nothing is stored there."""
        return await self._make_request("GET", path)

    async def write(
        self, path: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Write to a logical path."""
        return await self._make_request("POST", path, json=data or {})

    async def delete(self, path: str) -> None:
        await self._make_request("DELETE", path)

    async def create_orphan_token(
        self,
        policies: list[str],
        ttl: str,
        display_name: str,
        meta: dict[str, str] | None = None,
    ) -> str:
        """
        Create a renewable orphan token for the backend's service identity.

        Returns:
            The new client token
        """
        secret = await self.write(
            "auth/token/create-orphan",
            {
                "policies": policies,
                "ttl": ttl,
                "renewable": True,
                "display_name": display_name,
                "meta": meta or {},
            },
        )
        try:
            return secret["auth"]["client_token"]  # type: ignore[index]
        except (KeyError, TypeError) as e:
            raise VaultAPIError(
                "unexpected response", path="auth/token/create-orphan"
            ) from e

    async def renew_self(self, increment: str) -> None:
        await self.write("auth/token/renew-self", {"increment": increment})

    async def lookup_accessor(self, accessor: str) -> dict[str, Any]:
        secret = await self.write("auth/token/lookup-accessor", {"accessor": accessor})
        return (secret or {}).get("data") or {}

    async def read_entity(self, entity_id: str) -> dict[str, Any]:
        secret = await self.read(f"identity/entity/id/{entity_id}")
        return (secret or {}).get("data") or {}

    async def read_group(self, group_id: str) -> dict[str, Any]:
        secret = await self.read(f"identity/group/id/{group_id}")
        return (secret or {}).get("data") or {}

    async def create_scoped_token(
        self,
        token_data: dict[str, Any],
        entity_alias: str,
        role_suffix: str,
    ) -> dict[str, Any]:
        """
        Create a non-renewable orphan token bound to one entity alias.

        A throwaway token role restricts the token to the requested policies
        and alias; the role is deleted again once the token exists.

        Args:
            token_data: Token parameters; must contain ``policies``
            entity_alias: Alias the token is issued for
            role_suffix: Unique suffix of the throwaway token role

        Returns:
            The full Vault response including the ``auth`` block
        """
        policies = token_data.get("policies")
        if policies is None:
            raise VaultAPIError("expected 'policies' in token data")
        if isinstance(policies, str):
            policies = [p.strip() for p in policies.split(",") if p.strip()]

        entity_alias = entity_alias.lower()
        role_path = f"auth/token/roles/{SCOPED_TOKEN_ROLE_PREFIX}-{role_suffix}"
        await self.write(
            role_path,
            {
                "allowed_policies": policies,
                "allowed_entity_aliases": entity_alias,
                "orphan": True,
                "renewable": False,
            },
        )

        try:
            data = dict(token_data)
            data["display_name"] = entity_alias
            data["entity_alias"] = entity_alias
            secret = await self.write(
                f"auth/token/create/{SCOPED_TOKEN_ROLE_PREFIX}-{role_suffix}", data
            )
        finally:
            try:
                await self.delete(role_path)
            except VaultAPIError as e:
                logger.warning(f"Failed to delete token role {role_path}: {e}")

        if not secret or "auth" not in secret:
            raise VaultAPIError("unexpected response", path=role_path)
        return secret

    async def revoke_accessor(self, accessor: str) -> None:
        await self.write("auth/token/revoke-accessor", {"accessor": accessor})

    async def revoke_lease(self, lease_id: str) -> None:
        await self._make_request("PUT", "sys/leases/revoke", json={"lease_id": lease_id})


def _error_messages(response: httpx.Response) -> list[str]:
    try:
        return [str(e) for e in response.json().get("errors", [])]
    except (ValueError, AttributeError):
        return []
