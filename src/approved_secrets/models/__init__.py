"""
Models package - Pydantic models for type-safe workflow handling.

Defines data models for:
- Approval policies (roles)
- In-flight requests and issued-secret bookkeeping
- Backend configuration
- Caller contexts, resolved identities and leased secrets
"""

from .common import (
    CallerContext,
    Clock,
    DownstreamResult,
    LeasedSecret,
    ResolvedIdentity,
    parse_duration,
    utc_now,
)
from .config import BackendConfig
from .request import Issue, Request
from .role import Role

__all__ = [
    "BackendConfig",
    "CallerContext",
    "Clock",
    "DownstreamResult",
    "Issue",
    "LeasedSecret",
    "Request",
    "ResolvedIdentity",
    "Role",
    "parse_duration",
    "utc_now",
]
