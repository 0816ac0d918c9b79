"""
Issuance engine.

Exchanges a sufficiently approved request for a downstream secret. All
checks and the Slack notification happen before the downstream call, so a
failure up to and including that call leaves the request in place and the
requester can retry with the same nonce. Once the secret is released, the
Issue is recorded and the request is consumed.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from approved_secrets.constants import (
    ERROR_EXCLUSIVE_LEASE_ACTIVE,
    ERROR_INSUFFICIENT_APPROVALS,
    METHOD_POST,
    SECRET_TYPE_ISSUE,
)
from approved_secrets.errors import (
    BackendError,
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)
from approved_secrets.models import (
    BackendConfig,
    CallerContext,
    Issue,
    LeasedSecret,
    Request,
    Role,
)
from approved_secrets.observability.metrics import metrics_collector
from approved_secrets.utils.slack import SlackNotifier
from approved_secrets.utils.templating import render_secret_data

from .downstream import DownstreamSecretSource
from .request_ledger import RequestLedger

logger = logging.getLogger(__name__)


def lease_ttl(
    role: Role, requested_ttl: int | None, mount_max_ttl: int
) -> tuple[int, list[str]]:
    """
    Compute the TTL of an issued lease.

    The role's default TTL applies unless a shorter one is requested; the
    result never exceeds the role's max TTL.

    Returns:
        TTL in seconds and any warnings for the caller
    """
    warnings: list[str] = []
    base = role.effective_ttl or mount_max_ttl

    ttl = base
    if requested_ttl:
        ttl = min(requested_ttl, base)
        if requested_ttl > base:
            warnings.append(
                f"requested ttl of {requested_ttl}s is greater than the role's "
                f"ttl; using {base}s"
            )

    if role.secret_max_ttl and ttl > role.secret_max_ttl:
        warnings.append(
            f"ttl of {ttl}s is greater than secret_max_ttl; "
            f"capped to {role.secret_max_ttl}s"
        )
        ttl = role.secret_max_ttl
    return ttl, warnings


class IssuanceEngine:
    """Releases downstream secrets for approved requests."""

    def __init__(
        self,
        ledger: RequestLedger,
        downstream: DownstreamSecretSource,
        notifier: SlackNotifier,
        mount_max_ttl: int,
    ):
        self.ledger = ledger
        self.downstream = downstream
        self.notifier = notifier
        self.mount_max_ttl = mount_max_ttl

    async def issue(
        self,
        role_name: str,
        nonce: str,
        requester_ctx: CallerContext,
        ttl: int | None = None,
        fields: dict[str, Any] | None = None,
    ) -> LeasedSecret:
        """
        Issue the secret of an approved request.

        Args:
            role_name: Role the request was opened against
            nonce: Request nonce
            requester_ctx: Caller context; must resolve to the original requester
            ttl: Requested lease TTL in seconds (optional)
            fields: Values for the role's secret_required_fields

        Returns:
            Non-renewable leased secret wrapping the downstream payload

        Raises:
            NotFoundError: Request, config or role missing
            ExpiredError: Request expired
            PermissionDeniedError: Not enough approvals or caller is not the requester
            ConflictError: An Issue already exists for this nonce
            ValidationError: Required fields missing
            UpstreamFailureError: Notification or downstream call failed
        """
        ledger = self.ledger
        fields = fields or {}

        async with ledger.requests.lock(role_name, nonce):
            request = await ledger.load_live(role_name, nonce)

            existing = await ledger.issues.get(Issue, role_name, nonce)
            if existing is not None:
                await ledger.requests.delete(role_name, nonce)
                raise ConflictError(
                    f"request {role_name}/{nonce} was already issued",
                    user_action="Open a new request",
                )

            if not request.is_approved:
                raise PermissionDeniedError(
                    ERROR_INSUFFICIENT_APPROVALS.format(
                        request.approvals, request.min_approvers
                    ),
                    user_action="Collect more approvals before issuing",
                )

            config = await ledger.config_provider()
            requester = await ledger.resolver.resolve(
                requester_ctx, config.identity_template
            )
            if requester.identity != request.requester_id:
                raise PermissionDeniedError(
                    "only the original requester can issue this request"
                )

            role = await ledger.registry.get(role_name)
            missing = [f for f in role.secret_required_fields if f not in fields]
            if missing:
                raise ValidationError(
                    f"missing required fields: {', '.join(missing)}",
                    field="fields",
                )

            lease_seconds, warnings = lease_ttl(role, ttl, self.mount_max_ttl)

            data: dict[str, Any] | None = None
            if role.secret_path_method == METHOD_POST:
                data = await render_secret_data(
                    role.secret_data,
                    lambda template: ledger.resolver.render(requester_ctx, template),
                )
                data["ttl"] = lease_seconds
                for name in role.secret_required_fields:
                    data[name] = fields[name]

            async with self._exclusive_slot(role_name, role):
                await self._notify(config, role, request, fields)

                result = await self.downstream.invoke(
                    role.secret_path,
                    role.secret_path_method,
                    data,
                    requester=request.requester_id,
                    idempotency_key=f"{role_name.lower()}/{nonce}",
                    secret_type=role.secret_type,
                )

                now = ledger.clock()
                issue = Issue(
                    role_name=request.role_name,
                    nonce=nonce,
                    requester_id=request.requester_id,
                    approver_ids=list(request.approver_ids),
                    secret_type=role.secret_type,
                    issued_at=now,
                    expires_at=now + timedelta(seconds=lease_seconds),
                    correlation=result.correlation,
                )
                await ledger.issues.put(issue, role_name, nonce)
                await ledger.requests.delete(role_name, nonce)

        metrics_collector.record_issue(role_name, role.secret_type)
        for warning in warnings:
            logger.warning(warning, extra={"role_name": role_name, "nonce": nonce})

        return LeasedSecret(
            secret_type=SECRET_TYPE_ISSUE,
            data=result.payload,
            ttl=lease_seconds,
            renewable=False,
            internal_data={"name": request.role_name, "nonce": nonce},
            warnings=warnings,
        )

    @asynccontextmanager
    async def _exclusive_slot(self, role_name: str, role: Role) -> AsyncIterator[None]:
        """
        Hold the role-wide issue lock of an exclusive role.

        Raises:
            ConflictError: If another secret of the role is still outstanding
        """
        if not role.exclusive_lease:
            yield
            return

        async with self.ledger.issues.lock(role_name):
            active = await self.ledger.active_issue(role_name)
            if active is not None:
                raise ConflictError(
                    ERROR_EXCLUSIVE_LEASE_ACTIVE.format(
                        role_name, active.expires_at.isoformat()
                    ),
                    user_action="Wait for the current lease to expire or be revoked",
                )
            yield

    async def _notify(
        self,
        config: BackendConfig,
        role: Role,
        request: Request,
        fields: dict[str, Any],
    ) -> None:
        if not role.notify_slack_channels:
            return

        text = (
            f"Secret of role *{request.role_name}* issued to "
            f"*{request.requester_id}*"
        )
        details = {
            "Approvers": ", ".join(request.approver_ids),
            "Reason": request.reason or "-",
        }
        if role.secret_environment:
            details["Environment"] = role.secret_environment
        for name in role.secret_required_fields:
            details[name] = str(fields.get(name, ""))

        try:
            await self.notifier.notify(
                config.slack_webhook_url, role.notify_slack_channels, text, details
            )
        except BackendError as e:
            if config.notify_fail_closed:
                raise
            logger.warning(
                f"Slack notification failed, issuing anyway: {e}",
                extra={"role_name": request.role_name, "nonce": request.nonce},
            )
