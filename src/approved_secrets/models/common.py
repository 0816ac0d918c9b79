"""
Common models shared across the workflow components.

This module defines the caller-facing structures passed between the host and
the backend: who is calling, who they resolved to, and the leased secret
handed back to the host's lease manager.
"""

import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_duration(value: Any) -> int:
    """
    Parse a duration into whole seconds.

    Accepts integers (seconds) and strings such as ``"90"``, ``"10m"``,
    ``"8h"`` or ``"2d"``.

    Raises:
        ValueError: If the value is negative or not a recognised duration
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, int | float):
        seconds = int(value)
    elif isinstance(value, str):
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2)]
    else:
        raise ValueError(f"invalid duration: {value!r}")

    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


def split_comma_list(value: Any) -> Any:
    """Accept ``"a,b"`` as well as ``["a", "b"]`` for string-list fields."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class CallerContext(BaseModel):
    """Identity information the host attaches to an inbound call."""

    model_config = {"populate_by_name": True}

    entity_id: str = Field("", description="Host identity entity ID of the caller")
    client_token_accessor: str = Field(
        "", description="Accessor of the token used for this call"
    )
    display_name: str = Field("", description="Display name of the caller's token")


class ResolvedIdentity(BaseModel):
    """Canonical identity of a caller plus the roles they hold."""

    identity: str = Field(..., description="Canonical, lowercased identity string")
    roles: list[str] = Field(
        default_factory=list, description="Roles held by the caller"
    )

    def matches(self, bound_ids: list[str], bound_roles: list[str]) -> bool:
        """
        Check this identity against a pair of allowlists.

        Empty allowlists are unrestricted. When both are set, membership in
        either one is sufficient.
        """
        if not bound_ids and not bound_roles:
            return True

        ids = {i.lower() for i in bound_ids}
        if self.identity.lower() in ids:
            return True

        return any(role in bound_roles for role in self.roles)

    def matched_role(self, bound_roles: list[str]) -> str | None:
        """Return the first held role present in ``bound_roles``."""
        for role in self.roles:
            if not bound_roles or role in bound_roles:
                return role
        return None


class DownstreamResult(BaseModel):
    """Payload returned by the downstream secret source."""

    payload: dict[str, Any] = Field(default_factory=dict)
    correlation: dict[str, Any] = Field(
        default_factory=dict,
        description="Identifiers needed to reverse the grant on revoke",
    )


class LeasedSecret(BaseModel):
    """A secret handed to the host's lease manager."""

    secret_type: str = Field(..., description="Lease type used to route revocation")
    data: dict[str, Any] = Field(default_factory=dict)
    ttl: int = Field(..., description="Lease TTL in seconds")
    renewable: bool = Field(False)
    internal_data: dict[str, Any] = Field(
        default_factory=dict,
        description="Data the host hands back to the revoke hook",
    )
    warnings: list[str] = Field(default_factory=list)
