"""
Unit tests for the Vault HTTP client.

Requests are served by ``httpx.MockTransport`` handlers, so no Vault server
is needed.
"""

import json

import httpx
import pytest

from approved_secrets.errors import VaultAPIError
from approved_secrets.utils.circuit_breaker import DownstreamCircuitBreaker
from approved_secrets.utils.vault_client import VaultClient


def make_client(handler, circuit_breaker=None) -> VaultClient:
    return VaultClient(
        "http://vault:8200/",
        "s.token",
        circuit_breaker=circuit_breaker,
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    """Request shape and response handling."""

    @pytest.mark.asyncio
    async def test_read_sends_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["token"] = request.headers["X-Vault-Token"]
            return httpx.Response(200, json={"data": {"password": "hunter2"}})

        async with make_client(handler) as client:
            secret = await client.read("/secret/data/app")

        assert seen == {
            "url": "http://vault:8200/v1/secret/data/app",
            "token": "s.token",
        }
        assert secret == {"data": {"password": "hunter2"}}

    @pytest.mark.asyncio
    async def test_read_missing_returns_none(self):
        async with make_client(lambda r: httpx.Response(404, json={"errors": []})) as c:
            assert await c.read("secret/data/missing") is None

    @pytest.mark.asyncio
    async def test_client_error_raises_with_messages(self):
        def handler(request):
            return httpx.Response(403, json={"errors": ["permission denied"]})

        async with make_client(handler) as client:
            with pytest.raises(VaultAPIError, match="permission denied") as exc_info:
                await client.write("secret/data/app", {"a": 1})

        assert exc_info.value.upstream_status == 403

    @pytest.mark.asyncio
    async def test_empty_response(self):
        async with make_client(lambda r: httpx.Response(204)) as client:
            assert await client.delete("auth/token/roles/x") is None

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        async with make_client(handler) as client:
            with pytest.raises(VaultAPIError, match="ConnectError"):
                await client.read("secret/data/app")

    @pytest.mark.asyncio
    async def test_with_token_shares_transport(self):
        tokens = []

        def handler(request):
            tokens.append(request.headers["X-Vault-Token"])
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            other = client.with_token("s.other")
            await client.read("a")
            await other.read("b")

        assert tokens == ["s.token", "s.other"]


class TestTokenOperations:
    @pytest.mark.asyncio
    async def test_create_orphan_token(self):
        bodies = {}

        def handler(request):
            bodies[request.url.path] = json.loads(request.content)
            return httpx.Response(200, json={"auth": {"client_token": "s.new"}})

        async with make_client(handler) as client:
            token = await client.create_orphan_token(
                ["issuer"], "72h", "approved-secrets-plugin"
            )

        assert token == "s.new"
        body = bodies["/v1/auth/token/create-orphan"]
        assert body["policies"] == ["issuer"]
        assert body["ttl"] == "72h"
        assert body["renewable"] is True

    @pytest.mark.asyncio
    async def test_create_orphan_token_bad_response(self):
        async with make_client(lambda r: httpx.Response(200, json={})) as client:
            with pytest.raises(VaultAPIError):
                await client.create_orphan_token([], "72h", "x")

    @pytest.mark.asyncio
    async def test_scoped_token_role_is_cleaned_up(self):
        calls = []

        def handler(request):
            body = json.loads(request.content) if request.content else None
            calls.append((request.method, request.url.path, body))
            if request.url.path.startswith("/v1/auth/token/create/"):
                return httpx.Response(
                    200, json={"auth": {"client_token": "s.x", "accessor": "acc"}}
                )
            return httpx.Response(204)

        async with make_client(handler) as client:
            secret = await client.create_scoped_token(
                {"policies": "admin, audit", "ttl": 600}, "Alice", "k8s-admin-n1"
            )

        assert secret["auth"]["accessor"] == "acc"
        assert [c[:2] for c in calls] == [
            ("POST", "/v1/auth/token/roles/approved-secrets-k8s-admin-n1"),
            ("POST", "/v1/auth/token/create/approved-secrets-k8s-admin-n1"),
            ("DELETE", "/v1/auth/token/roles/approved-secrets-k8s-admin-n1"),
        ]
        assert calls[0][2]["allowed_policies"] == ["admin", "audit"]
        assert calls[0][2]["allowed_entity_aliases"] == "alice"
        assert calls[1][2]["entity_alias"] == "alice"

    @pytest.mark.asyncio
    async def test_scoped_token_role_deleted_on_failure(self):
        paths = []

        def handler(request):
            paths.append((request.method, request.url.path))
            if request.url.path.startswith("/v1/auth/token/create/"):
                return httpx.Response(400, json={"errors": ["invalid alias"]})
            return httpx.Response(204)

        async with make_client(handler) as client:
            with pytest.raises(VaultAPIError, match="invalid alias"):
                await client.create_scoped_token({"policies": ["a"]}, "bob", "r-n")

        assert paths[-1] == ("DELETE", "/v1/auth/token/roles/approved-secrets-r-n")

    @pytest.mark.asyncio
    async def test_revoke_lease(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        async with make_client(handler) as client:
            await client.revoke_lease("database/creds/app/abc")

        assert seen == {"method": "PUT", "body": {"lease_id": "database/creds/app/abc"}}


class TestCircuitBreaker:
    """Server failures trip the breaker; caller errors do not."""

    @pytest.mark.asyncio
    async def test_opens_after_server_errors(self):
        breaker = DownstreamCircuitBreaker("vault-test", fail_max=2, timeout_duration=60)
        async with make_client(lambda r: httpx.Response(503), breaker) as client:
            for _ in range(2):
                with pytest.raises(VaultAPIError):
                    await client.read("sys/health")

            assert breaker.current_state == "open"
            with pytest.raises(VaultAPIError, match="circuit breaker open"):
                await client.read("sys/health")

    @pytest.mark.asyncio
    async def test_client_errors_do_not_trip(self):
        breaker = DownstreamCircuitBreaker("vault-test-4xx", fail_max=2, timeout_duration=60)

        def handler(request):
            return httpx.Response(403, json={"errors": ["permission denied"]})

        async with make_client(handler, breaker) as client:
            for _ in range(3):
                with pytest.raises(VaultAPIError):
                    await client.write("secret/data/app", {})

        assert breaker.current_state == "closed"
