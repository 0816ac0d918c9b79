"""
Role registry: CRUD over named approval policies.

Roles are validated on write and stored whole. Deleting or editing a role
never touches requests already opened against it, because every request
snapshots the approver constraints it needs.
"""

import logging
from typing import Any

import pydantic

from approved_secrets.errors import NotFoundError, ValidationError
from approved_secrets.models import Role
from approved_secrets.storage import StorageAccessor

logger = logging.getLogger(__name__)


def _validation_message(error: pydantic.ValidationError) -> tuple[str, str | None]:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return first.get("msg", "invalid value"), field


class RoleRegistry:
    """Stores and validates roles in the ``role`` namespace."""

    def __init__(self, roles: StorageAccessor, max_lease_ttl: int):
        """
        Initialize registry.

        Args:
            roles: Accessor of the role namespace
            max_lease_ttl: Mount ceiling applied to ``secret_max_ttl``
        """
        self.roles = roles
        self.max_lease_ttl = max_lease_ttl

    async def put(self, name: str, role: Role | dict[str, Any]) -> list[str]:
        """
        Validate and store a role.

        Returns:
            Warnings for the caller (e.g. a clamped max TTL)

        Raises:
            ValidationError: If the role is malformed or inconsistent
        """
        if not name or not name.strip("/"):
            raise ValidationError("must not be empty", field="name")

        if not isinstance(role, Role):
            try:
                role = Role.model_validate(role)
            except pydantic.ValidationError as e:
                message, field = _validation_message(e)
                raise ValidationError(message, field=field) from e

        role.validate_policy()

        warnings: list[str] = []
        if self.max_lease_ttl and role.secret_max_ttl > self.max_lease_ttl:
            warnings.append(
                f"secret_max_ttl of {role.secret_max_ttl}s is greater than the "
                f"mount's maximum TTL; clamped to {self.max_lease_ttl}s"
            )
            role.secret_max_ttl = self.max_lease_ttl
            if role.secret_ttl > role.secret_max_ttl:
                role.secret_ttl = role.secret_max_ttl

        async with self.roles.lock(name):
            await self.roles.put(role, name)

        logger.info(f"Stored role {name}", extra={"role_name": name})
        return warnings

    async def get(self, name: str) -> Role:
        """
        Load a role.

        Raises:
            NotFoundError: If no role of that name exists
        """
        role = await self.roles.get(Role, name)
        if role is None:
            raise NotFoundError("role", name)
        return role

    async def list(self) -> list[str]:
        return await self.roles.list()

    async def delete(self, name: str) -> None:
        async with self.roles.lock(name):
            await self.roles.delete(name)
        logger.info(f"Deleted role {name}", extra={"role_name": name})

    async def overview(self, bound_requester_role: str | None = None) -> dict[str, Role]:
        """
        All roles, optionally only those a given requester role may request.

        Args:
            bound_requester_role: Keep roles listing this in bound_requester_roles
        """
        overview: dict[str, Role] = {}
        for name in await self.list():
            role = await self.roles.get(Role, name)
            if role is None:
                continue
            if (
                bound_requester_role
                and bound_requester_role not in role.bound_requester_roles
            ):
                continue
            overview[name] = role
        return overview
