"""
Caller identity resolution.

Requesters and approvers are resolved the same way: the caller's identity
entity is looked up in Vault, its canonical identity string is either the
name of its single alias or the configured identity template rendered
against the entity, and its roles are the ``primaryRole`` metadata of the
identity groups it belongs to.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from approved_secrets.constants import PRIMARY_ROLE_METADATA_KEY
from approved_secrets.errors import PermissionDeniedError
from approved_secrets.models import CallerContext, ResolvedIdentity

from .vault_client import VaultClient

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"{{\s*([^{}]+?)\s*}}")


class IdentityResolver(Protocol):
    """Resolves a caller context into a canonical identity."""

    async def resolve(
        self, ctx: CallerContext, identity_template: str = ""
    ) -> ResolvedIdentity: ...

    async def render(self, ctx: CallerContext, template: str) -> str: ...


def render_identity_template(template: str, entity: dict[str, Any]) -> str:
    """
    Substitute identity placeholders against a Vault entity.

    Supported placeholders:
        identity.entity.id
        identity.entity.name
        identity.entity.metadata.<key>
        identity.entity.aliases.<mount_accessor>.name
        identity.entity.aliases.<mount_accessor>.metadata.<key>

    Raises:
        ValueError: If a placeholder is unsupported or has no value
    """

    def substitute(match: re.Match) -> str:
        parts = match.group(1).split(".")
        if parts[:2] != ["identity", "entity"] or len(parts) < 3:
            raise ValueError(f"unsupported template {match.group(0)!r}")

        field = parts[2]
        value: Any = None
        if field in ("id", "name") and len(parts) == 3:
            value = entity.get(field)
        elif field == "metadata" and len(parts) == 4:
            value = (entity.get("metadata") or {}).get(parts[3])
        elif field == "aliases" and len(parts) >= 5:
            alias = next(
                (
                    a
                    for a in entity.get("aliases") or []
                    if a.get("mount_accessor") == parts[3]
                ),
                None,
            )
            if alias is not None:
                if parts[4] == "name" and len(parts) == 5:
                    value = alias.get("name")
                elif parts[4] == "metadata" and len(parts) == 6:
                    value = (alias.get("metadata") or {}).get(parts[5])
        else:
            raise ValueError(f"unsupported template {match.group(0)!r}")

        if value in (None, ""):
            raise ValueError(f"no value for template {match.group(0)!r}")
        return str(value)

    return _PLACEHOLDER_RE.sub(substitute, template)


class VaultIdentityResolver:
    """Identity resolver backed by Vault's identity store."""

    def __init__(self, client_provider: Callable[[], Awaitable[VaultClient]]):
        """
        Initialize resolver.

        Args:
            client_provider: Coroutine returning a Vault client authenticated
                with the backend's service token
        """
        self._client_provider = client_provider

    async def _entity(self, ctx: CallerContext) -> dict[str, Any]:
        client = await self._client_provider()

        entity_id = ctx.entity_id
        if not entity_id and ctx.client_token_accessor:
            token = await client.lookup_accessor(ctx.client_token_accessor)
            entity_id = token.get("entity_id") or ""

        if not entity_id:
            raise PermissionDeniedError(
                "could not get identity info: caller has no entity ID",
                user_action="Authenticate through an auth method that creates identities",
            )

        entity = await client.read_entity(entity_id)
        if not entity:
            raise PermissionDeniedError(f"could not find entity {entity_id}")
        return entity

    async def _roles(self, entity: dict[str, Any]) -> list[str]:
        client = await self._client_provider()
        roles: list[str] = []
        for group_id in entity.get("group_ids") or []:
            group = await client.read_group(group_id)
            role = (group.get("metadata") or {}).get(PRIMARY_ROLE_METADATA_KEY)
            if isinstance(role, str) and role and role not in roles:
                roles.append(role)
        return roles

    async def resolve(
        self, ctx: CallerContext, identity_template: str = ""
    ) -> ResolvedIdentity:
        """
        Resolve a caller into an identity and its roles.

        Raises:
            PermissionDeniedError: If the caller has no unambiguous identity
            VaultAPIError: If Vault could not be queried
        """
        entity = await self._entity(ctx)

        if identity_template:
            try:
                identity = render_identity_template(identity_template, entity)
            except ValueError as e:
                raise PermissionDeniedError(
                    f"could not apply identity template: {e}"
                ) from e
        else:
            aliases = entity.get("aliases") or []
            if len(aliases) != 1:
                raise PermissionDeniedError(
                    f"could not find entity alias: expected exactly one, got {len(aliases)}",
                    user_action="Configure identity_template to pick one alias",
                )
            identity = aliases[0].get("name") or ""

        if not identity:
            raise PermissionDeniedError("resolved identity is empty")

        roles = await self._roles(entity)
        logger.debug(f"Resolved caller {identity.lower()} with roles {roles}")
        return ResolvedIdentity(identity=identity.lower(), roles=roles)

    async def render(self, ctx: CallerContext, template: str) -> str:
        entity = await self._entity(ctx)
        return render_identity_template(template, entity)
