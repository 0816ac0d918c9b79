"""
Request ledger: pending approval requests keyed by (role name, nonce).

Opening a request admits the requester against the role's bound requesters,
enforces exclusive leases and snapshots the role's approver constraints into
the request. Expiry is checked lazily: an expired request is reported as
expired on every access until the host revokes its lease or a tidy pass
removes it.
"""

import logging
import secrets
from collections.abc import Awaitable, Callable
from datetime import timedelta

from approved_secrets.constants import ERROR_EXCLUSIVE_LEASE_ACTIVE, NONCE_BYTES
from approved_secrets.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PermissionDeniedError,
)
from approved_secrets.models import (
    BackendConfig,
    CallerContext,
    Clock,
    Issue,
    Request,
    utc_now,
)
from approved_secrets.storage import StorageAccessor
from approved_secrets.utils.identity import IdentityResolver

from .role_registry import RoleRegistry

logger = logging.getLogger(__name__)

ConfigProvider = Callable[[], Awaitable[BackendConfig]]


def generate_nonce() -> str:
    """128 random bits, lowercase hex."""
    return secrets.token_hex(NONCE_BYTES)


class RequestLedger:
    """Creates, reads and lists requests in the ``request`` namespace."""

    def __init__(
        self,
        requests: StorageAccessor,
        issues: StorageAccessor,
        registry: RoleRegistry,
        resolver: IdentityResolver,
        config_provider: ConfigProvider,
        clock: Clock = utc_now,
    ):
        self.requests = requests
        self.issues = issues
        self.registry = registry
        self.resolver = resolver
        self.config_provider = config_provider
        self.clock = clock

    async def open(
        self,
        role_name: str,
        requester_ctx: CallerContext,
        reason: str | None = None,
    ) -> Request:
        """
        Open a new approval request against a role.

        Raises:
            NotFoundError: If the role or the backend config does not exist
            PermissionDeniedError: If the requester is not bound to the role
            ConflictError: If the role is exclusive and a lease is still active
        """
        role = await self.registry.get(role_name)
        config = await self.config_provider()

        requester = await self.resolver.resolve(
            requester_ctx, config.identity_template
        )
        if not requester.matches(role.bound_requester_ids, role.bound_requester_roles):
            raise PermissionDeniedError(
                f"{requester.identity} is not allowed to request role {role_name}",
                user_action="Ask an administrator to add you to the role's bound requesters",
            )

        now = self.clock()
        if role.exclusive_lease:
            active = await self.active_issue(role_name)
            if active is not None:
                raise ConflictError(
                    ERROR_EXCLUSIVE_LEASE_ACTIVE.format(
                        role_name, active.expires_at.isoformat()
                    ),
                    user_action="Wait for the current lease to expire or be revoked",
                )

        nonce = generate_nonce()
        request = Request(
            role_name=role_name.lower(),
            nonce=nonce,
            requester_id=requester.identity,
            requester_role=requester.matched_role(role.bound_requester_roles),
            reason=reason,
            bound_approver_ids=[i.lower() for i in role.bound_approver_ids],
            bound_approver_roles=list(role.bound_approver_roles),
            min_approvers=role.min_approvers,
            approver_ids=[],
            created_at=now,
            expires_at=now + timedelta(seconds=config.approval_ttl),
        )

        async with self.requests.lock(role_name, nonce):
            await self.requests.put_versioned(request, role_name, nonce)

        logger.info(
            f"Opened request for role {role_name} by {requester.identity}",
            extra={"role_name": role_name, "nonce": nonce, "identity": requester.identity},
        )
        return request

    async def load_live(self, role_name: str, nonce: str) -> Request:
        """
        Load a request that has not expired. The caller holds its key lock.

        Raises:
            NotFoundError: If no such request exists
            ExpiredError: If it is past its deadline
        """
        request = await self.requests.get(Request, role_name, nonce)
        if request is None:
            raise NotFoundError("request", f"{role_name}/{nonce}")

        if request.is_expired(self.clock()):
            raise ExpiredError(role_name, nonce)
        return request

    async def read(self, role_name: str, nonce: str) -> Request:
        async with self.requests.lock(role_name, nonce):
            return await self.load_live(role_name, nonce)

    async def active_issue(self, role_name: str) -> Issue | None:
        """Return an unexpired Issue under the role, if any."""
        now = self.clock()
        for nonce in await self.issues.list(role_name):
            issue = await self.issues.get(Issue, role_name, nonce)
            if issue is not None and issue.is_active(now):
                return issue
        return None

    async def purge_expired(self, role_name: str) -> list[str]:
        """
        Delete expired requests under a role.

        Returns:
            Nonces of the deleted requests
        """
        purged: list[str] = []
        for nonce in await self.list(role_name):
            async with self.requests.lock(role_name, nonce):
                request = await self.requests.get(Request, role_name, nonce)
                if request is None or not request.is_expired(self.clock()):
                    continue
                await self.requests.delete(role_name, nonce)
            purged.append(nonce)

        if purged:
            logger.info(
                f"Purged {len(purged)} expired requests for role {role_name}",
                extra={"role_name": role_name},
            )
        return purged

    async def list(self, role_name: str) -> list[str]:
        """Nonces of requests stored under a role, expired or not."""
        return await self.requests.list(role_name)
