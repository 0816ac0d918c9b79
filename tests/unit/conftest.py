"""Shared pytest fixtures for approved-secrets unit tests."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from approved_secrets.backend import ApprovedSecretsBackend
from approved_secrets.errors import PermissionDeniedError, UpstreamFailureError
from approved_secrets.models import (
    BackendConfig,
    CallerContext,
    DownstreamResult,
    ResolvedIdentity,
)
from approved_secrets.settings import Settings
from approved_secrets.storage import InMemoryStorage


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeIdentityResolver:
    """Resolves callers by entity ID from a fixed table."""

    def __init__(self):
        self.identities: dict[str, ResolvedIdentity] = {}

    def add(self, identity: str, roles: list[str] | None = None) -> CallerContext:
        entity_id = f"entity-{identity}"
        self.identities[entity_id] = ResolvedIdentity(
            identity=identity.lower(), roles=roles or []
        )
        return CallerContext(entity_id=entity_id, display_name=identity)

    async def resolve(
        self, ctx: CallerContext, identity_template: str = ""
    ) -> ResolvedIdentity:
        try:
            return self.identities[ctx.entity_id]
        except KeyError:
            raise PermissionDeniedError(f"unknown entity {ctx.entity_id!r}") from None

    async def render(self, ctx: CallerContext, template: str) -> str:
        identity = (await self.resolve(ctx)).identity
        if template == "{{identity.entity.name}}":
            return identity
        raise ValueError(f"unsupported template {template}")


class FakeDownstream:
    """Records invocations and revocations instead of calling Vault."""

    def __init__(self):
        self.invocations: list[dict[str, Any]] = []
        self.revocations: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    async def invoke(
        self,
        path: str,
        method: str,
        data: dict[str, Any] | None,
        requester: str,
        idempotency_key: str,
        secret_type: str = "",
    ) -> DownstreamResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.invocations.append(
            {
                "path": path,
                "method": method,
                "data": data,
                "requester": requester,
                "idempotency_key": idempotency_key,
                "secret_type": secret_type,
            }
        )
        n = len(self.invocations)
        return DownstreamResult(
            payload={"token": f"secret-{n}"}, correlation={"accessor": f"acc-{n}"}
        )

    async def revoke(self, correlation: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.revocations.append(correlation)


class RecordingNotifier:
    """Stands in for SlackNotifier and records messages."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []
        self.fail = False

    async def notify(
        self,
        webhook_url: str,
        channels: list[str],
        text: str,
        fields: dict[str, str] | None = None,
    ) -> None:
        if not channels:
            return
        if self.fail:
            raise UpstreamFailureError("Slack", "webhook unreachable")
        self.messages.append({"channels": channels, "text": text, "fields": fields})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver():
    return FakeIdentityResolver()


@pytest.fixture
def downstream():
    return FakeDownstream()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def test_settings():
    return Settings(max_lease_ttl_seconds=32 * 24 * 3600, token_renew_interval_seconds=3600)


@pytest.fixture
def backend(storage, resolver, downstream, notifier, clock, test_settings):
    """Backend wired to in-memory fakes; Vault is never contacted."""

    def no_vault(vault_addr: str):
        raise AssertionError("Vault must not be contacted in this test")

    return ApprovedSecretsBackend(
        storage,
        no_vault,
        notifier=notifier,
        resolver=resolver,
        downstream=downstream,
        settings=test_settings,
        clock=clock,
    )


@pytest.fixture
async def configured_backend(backend):
    """Backend with a stored config (approval_ttl 1h)."""
    await backend.config_store.put(
        BackendConfig(vault_token="s.service", approval_ttl=3600), "config"
    )
    return backend


@pytest.fixture
def store_config(backend):
    """Write a config with overrides directly to storage."""

    async def _store(**overrides: Any) -> BackendConfig:
        config = BackendConfig(vault_token="s.service", **overrides)
        await backend.config_store.put(config, "config")
        return config

    return _store
