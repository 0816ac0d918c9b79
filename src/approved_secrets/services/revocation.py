"""
Lease revocation hook.

The host calls back when a lease ends. Issue leases reverse the downstream
grant and then drop the Issue record; request leases drop the pending
request. Both are no-ops when the record is already gone, so the host can
retry revocation freely. Neither lease type can be renewed.
"""

import logging

from approved_secrets.constants import (
    ERROR_NOT_RENEWABLE,
    SECRET_TYPE_ISSUE,
    SECRET_TYPE_REQUEST,
)
from approved_secrets.errors import ValidationError
from approved_secrets.models import Issue, LeasedSecret
from approved_secrets.observability.metrics import metrics_collector
from approved_secrets.storage import StorageAccessor

from .downstream import DownstreamSecretSource

logger = logging.getLogger(__name__)


class LeaseRevoker:
    """Handles revoke and renew callbacks for both lease types."""

    def __init__(
        self,
        requests: StorageAccessor,
        issues: StorageAccessor,
        downstream: DownstreamSecretSource,
    ):
        self.requests = requests
        self.issues = issues
        self.downstream = downstream

    @staticmethod
    def _lease_key(lease: LeasedSecret) -> tuple[str, str]:
        role_name = lease.internal_data.get("name")
        if not role_name:
            raise ValidationError("missing role", field="internal_data.name")
        nonce = lease.internal_data.get("nonce")
        if not nonce:
            raise ValidationError("missing nonce", field="internal_data.nonce")
        return str(role_name), str(nonce)

    async def revoke(self, lease: LeasedSecret) -> None:
        """
        Revoke a lease.

        Raises:
            ValidationError: Unknown lease type or missing name/nonce
            UpstreamFailureError: Downstream revocation failed (Issue kept)
        """
        role_name, nonce = self._lease_key(lease)

        if lease.secret_type == SECRET_TYPE_ISSUE:
            async with self.issues.lock(role_name, nonce):
                issue = await self.issues.get(Issue, role_name, nonce)
                if issue is None:
                    logger.debug(
                        f"Issue {role_name}/{nonce} already gone",
                        extra={"role_name": role_name, "nonce": nonce},
                    )
                    return
                await self.downstream.revoke(issue.correlation)
                await self.issues.delete(role_name, nonce)

        elif lease.secret_type == SECRET_TYPE_REQUEST:
            async with self.requests.lock(role_name, nonce):
                await self.requests.delete(role_name, nonce)

        else:
            raise ValidationError(
                f"unknown lease type {lease.secret_type!r}", field="secret_type"
            )

        metrics_collector.record_revocation(lease.secret_type)
        logger.info(
            f"Revoked {lease.secret_type} lease for role {role_name}",
            extra={"role_name": role_name, "nonce": nonce},
        )

    async def renew(self, lease: LeasedSecret) -> LeasedSecret:
        raise ValidationError(ERROR_NOT_RENEWABLE.format(lease.secret_type))
