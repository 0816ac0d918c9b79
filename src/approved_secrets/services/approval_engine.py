"""
Approval engine.

Approvals are recorded as a set of distinct identities on the request. The
threshold is never stored: a request is approved whenever
``len(approver_ids) >= min_approvers``. Each approval, including a repeated
one, pushes the request's deadline to ``now + approval_ttl``.
"""

import logging

from approved_secrets.constants import AUDIT_LOGGER_NAME, MAX_WRITE_CONFLICT_RETRIES
from approved_secrets.errors import ConflictError, PermissionDeniedError
from approved_secrets.models import CallerContext, Request
from approved_secrets.observability.logging import AuditLogger
from approved_secrets.observability.metrics import metrics_collector
from approved_secrets.storage import WriteConflictError

from .request_ledger import RequestLedger

logger = logging.getLogger(__name__)


class ApprovalEngine:
    """Records approvals on pending requests."""

    def __init__(self, ledger: RequestLedger):
        self.ledger = ledger
        self.audit = AuditLogger(AUDIT_LOGGER_NAME)

    async def approve(
        self,
        role_name: str,
        nonce: str,
        approver_ctx: CallerContext,
        reason: str | None = None,
    ) -> Request:
        """
        Approve a request.

        Raises:
            NotFoundError: If the request does not exist
            ExpiredError: If the request expired
            PermissionDeniedError: If the approver is not allowed to approve
            ConflictError: If concurrent writers kept winning the race
        """
        config = await self.ledger.config_provider()
        requests = self.ledger.requests

        for attempt in range(1, MAX_WRITE_CONFLICT_RETRIES + 1):
            async with requests.lock(role_name, nonce):
                request = await self.ledger.load_live(role_name, nonce)

                approver = await self.ledger.resolver.resolve(
                    approver_ctx, config.identity_template
                )
                if not request.approver_allowed(approver):
                    raise PermissionDeniedError(
                        f"{approver.identity} is not allowed to approve requests "
                        f"for role {role_name}"
                    )
                if (
                    not config.allow_self_approval
                    and approver.identity == request.requester_id
                ):
                    raise PermissionDeniedError(
                        "requesters cannot approve their own request",
                        user_action="Ask another bound approver to approve",
                    )

                added = request.add_approver(approver.identity)
                request.extend(self.ledger.clock(), config.approval_ttl)

                try:
                    await requests.put_versioned(request, role_name, nonce)
                except WriteConflictError as e:
                    logger.warning(
                        f"Approval attempt {attempt}/{MAX_WRITE_CONFLICT_RETRIES} "
                        f"lost a write race: {e}",
                        extra={"role_name": role_name, "nonce": nonce},
                    )
                    continue

            if added:
                metrics_collector.record_approval(role_name)
            logger.info(
                f"Recorded approval of {approver.identity} for role {role_name} "
                f"({request.approvals}/{request.min_approvers})",
                extra={
                    "role_name": role_name,
                    "nonce": nonce,
                    "identity": approver.identity,
                },
            )
            self.audit.decision(
                "approve",
                role_name,
                allowed=True,
                identity=approver.identity,
                nonce=nonce,
                details={
                    "approvals": request.approvals,
                    "min_approvers": request.min_approvers,
                    "new_approval": added,
                    "reason": reason,
                },
            )
            return request

        raise ConflictError(
            f"request {role_name}/{nonce} was modified concurrently",
            user_action="Retry the approval",
        )
