"""Unit tests for the Vault downstream secret source."""

import json

import httpx
import pytest

from approved_secrets.errors import NotFoundError, ValidationError
from approved_secrets.services import VaultDownstreamSource
from approved_secrets.utils.vault_client import VaultClient


class RecordingVault:
    """MockTransport handler answering a few canned paths."""

    def __init__(self):
        self.calls: list[tuple[str, str, dict | None]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.calls.append((request.method, path, body))

        if path == "/v1/secret/data/app":
            return httpx.Response(200, json={"data": {"data": {"password": "pw"}}})
        if path == "/v1/database/creds/app":
            return httpx.Response(
                200,
                json={
                    "lease_id": "database/creds/app/abc",
                    "data": {"username": "v-alice", "password": "pw"},
                },
            )
        if path.startswith("/v1/auth/token/create/"):
            return httpx.Response(
                200,
                json={"auth": {"client_token": "s.scoped", "accessor": "acc-1"}},
            )
        if request.method in ("DELETE", "PUT") or path.startswith("/v1/auth/token/"):
            return httpx.Response(204)
        return httpx.Response(404, json={"errors": []})


@pytest.fixture
def vault():
    return RecordingVault()


@pytest.fixture
def source(vault):
    client = VaultClient("http://vault:8200", "s.service", transport=httpx.MockTransport(vault))

    async def provider() -> VaultClient:
        return client

    return VaultDownstreamSource(provider)


class TestInvoke:
    @pytest.mark.asyncio
    async def test_get(self, source):
        result = await source.invoke(
            "secret/data/app", "GET", None, "alice", "app/n1"
        )
        assert result.payload == {"data": {"password": "pw"}}
        assert result.correlation == {}

    @pytest.mark.asyncio
    async def test_get_missing(self, source):
        with pytest.raises(NotFoundError):
            await source.invoke("secret/data/nothing", "GET", None, "alice", "x/n1")

    @pytest.mark.asyncio
    async def test_post_records_lease(self, source, vault):
        result = await source.invoke(
            "database/creds/app", "POST", {"ttl": 600}, "alice", "db/n1"
        )
        assert result.payload["username"] == "v-alice"
        assert result.correlation == {"lease_id": "database/creds/app/abc"}
        assert vault.calls[0] == ("POST", "/v1/database/creds/app", {"ttl": 600})

    @pytest.mark.asyncio
    async def test_vault_token(self, source, vault):
        result = await source.invoke(
            "",
            "POST",
            {"policies": ["admin"], "ttl": 600},
            "alice",
            "vault-admin/n1",
            secret_type="vault-token",
        )
        assert result.payload["client_token"] == "s.scoped"
        assert result.correlation == {"accessor": "acc-1"}
        assert vault.calls[1][1] == "/v1/auth/token/create/approved-secrets-vault-admin-n1"

    @pytest.mark.asyncio
    async def test_vault_token_needs_policies(self, source):
        with pytest.raises(ValidationError):
            await source.invoke(
                "", "POST", {"ttl": 600}, "alice", "r/n1", secret_type="vault-token"
            )


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revokes_accessor_and_lease(self, source, vault):
        await source.revoke({"accessor": "acc-1", "lease_id": "db/creds/x"})
        assert vault.calls == [
            ("POST", "/v1/auth/token/revoke-accessor", {"accessor": "acc-1"}),
            ("PUT", "/v1/sys/leases/revoke", {"lease_id": "db/creds/x"}),
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_revoke(self, source, vault):
        await source.revoke({})
        assert vault.calls == []
