"""Unit tests for Vault-backed caller identity resolution."""

import httpx
import pytest

from approved_secrets.errors import PermissionDeniedError
from approved_secrets.models import CallerContext
from approved_secrets.utils.identity import (
    VaultIdentityResolver,
    render_identity_template,
)
from approved_secrets.utils.vault_client import VaultClient

ENTITY = {
    "id": "ent-1",
    "name": "entity_alice",
    "metadata": {"team": "payments"},
    "aliases": [
        {
            "mount_accessor": "auth_oidc_123",
            "name": "Alice@Example.com",
            "metadata": {"email": "alice@example.com"},
        }
    ],
    "group_ids": ["grp-sre", "grp-none", "grp-dev"],
}

GROUPS = {
    "grp-sre": {"name": "sre", "metadata": {"primaryRole": "sre"}},
    "grp-none": {"name": "everyone", "metadata": None},
    "grp-dev": {"name": "dev", "metadata": {"primaryRole": "dev"}},
}


def vault_handler(entity: dict):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v1/auth/token/lookup-accessor":
            return httpx.Response(200, json={"data": {"entity_id": "ent-1"}})
        if path.startswith("/v1/identity/entity/id/"):
            if path.endswith("/ent-1"):
                return httpx.Response(200, json={"data": entity})
            return httpx.Response(404, json={"errors": []})
        if path.startswith("/v1/identity/group/id/"):
            group = GROUPS[path.rsplit("/", 1)[-1]]
            return httpx.Response(200, json={"data": group})
        return httpx.Response(404, json={"errors": []})

    return handler


def make_resolver(entity: dict = ENTITY) -> VaultIdentityResolver:
    client = VaultClient(
        "http://vault:8200", "s.service", transport=httpx.MockTransport(vault_handler(entity))
    )

    async def provider() -> VaultClient:
        return client

    return VaultIdentityResolver(provider)


class TestRenderIdentityTemplate:
    @pytest.mark.parametrize(
        "template, expected",
        [
            ("{{identity.entity.id}}", "ent-1"),
            ("{{identity.entity.name}}", "entity_alice"),
            ("{{ identity.entity.metadata.team }}", "payments"),
            ("{{identity.entity.aliases.auth_oidc_123.name}}", "Alice@Example.com"),
            (
                "{{identity.entity.aliases.auth_oidc_123.metadata.email}}",
                "alice@example.com",
            ),
            ("user-{{identity.entity.name}}", "user-entity_alice"),
            ("no placeholders", "no placeholders"),
        ],
    )
    def test_renders(self, template, expected):
        assert render_identity_template(template, ENTITY) == expected

    @pytest.mark.parametrize(
        "template",
        [
            "{{identity.groups.names}}",
            "{{identity.entity.metadata.missing}}",
            "{{identity.entity.aliases.auth_other.name}}",
            "{{identity.entity.unknown}}",
        ],
    )
    def test_unresolvable(self, template):
        with pytest.raises(ValueError):
            render_identity_template(template, ENTITY)


class TestVaultIdentityResolver:
    @pytest.mark.asyncio
    async def test_single_alias_identity_and_roles(self):
        resolved = await make_resolver().resolve(CallerContext(entity_id="ent-1"))

        assert resolved.identity == "alice@example.com"
        assert resolved.roles == ["sre", "dev"]

    @pytest.mark.asyncio
    async def test_identity_template(self):
        resolved = await make_resolver().resolve(
            CallerContext(entity_id="ent-1"), "{{identity.entity.metadata.team}}"
        )
        assert resolved.identity == "payments"

    @pytest.mark.asyncio
    async def test_entity_from_token_accessor(self):
        resolved = await make_resolver().resolve(
            CallerContext(client_token_accessor="acc-1")
        )
        assert resolved.identity == "alice@example.com"

    @pytest.mark.asyncio
    async def test_no_entity(self):
        with pytest.raises(PermissionDeniedError):
            await make_resolver().resolve(CallerContext())

    @pytest.mark.asyncio
    async def test_unknown_entity(self):
        with pytest.raises(PermissionDeniedError):
            await make_resolver().resolve(CallerContext(entity_id="ent-404"))

    @pytest.mark.asyncio
    async def test_ambiguous_aliases(self):
        entity = dict(
            ENTITY,
            aliases=[
                {"mount_accessor": "a", "name": "alice"},
                {"mount_accessor": "b", "name": "alice2"},
            ],
        )
        with pytest.raises(PermissionDeniedError, match="exactly one"):
            await make_resolver(entity).resolve(CallerContext(entity_id="ent-1"))

    @pytest.mark.asyncio
    async def test_bad_template(self):
        with pytest.raises(PermissionDeniedError, match="identity template"):
            await make_resolver().resolve(
                CallerContext(entity_id="ent-1"), "{{identity.entity.metadata.nope}}"
            )

    @pytest.mark.asyncio
    async def test_render(self):
        rendered = await make_resolver().render(
            CallerContext(entity_id="ent-1"), "{{identity.entity.name}}"
        )
        assert rendered == "entity_alice"
