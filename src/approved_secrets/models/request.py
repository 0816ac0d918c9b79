"""
Pydantic models for in-flight requests and issued secrets.

A Request snapshots its role's approver constraints at creation time so that
later edits to the role never change an approval round already in progress.
An Issue is the bookkeeping left behind once a request was exchanged for a
downstream secret.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from .common import ResolvedIdentity


class Request(BaseModel):
    """One in-flight approval round, addressed by (role_name, nonce)."""

    model_config = {"populate_by_name": True}

    role_name: str = Field(..., description="Role the request was opened against")
    nonce: str = Field(..., description="Opaque handle of this request")
    requester_id: str = Field(..., description="Resolved identity of the requester")
    requester_role: str | None = Field(
        None, description="Role the requester was admitted with"
    )
    reason: str | None = Field(None, description="Why the secret is needed")

    # Snapshot of the role's approval constraints
    bound_approver_ids: list[str] = Field(default_factory=list)
    bound_approver_roles: list[str] = Field(default_factory=list)
    min_approvers: int = Field(1)

    approver_ids: list[str] = Field(
        default_factory=list, description="Distinct approver identities so far"
    )
    created_at: datetime = Field(..., description="When the request was opened")
    expires_at: datetime = Field(..., description="Approval deadline")
    version: int = Field(0, description="Write generation for optimistic checks")

    def is_expired(self, now: datetime) -> bool:
        """A request strictly past its deadline is dead."""
        return now > self.expires_at

    @property
    def approvals(self) -> int:
        return len(self.approver_ids)

    @property
    def is_approved(self) -> bool:
        return self.approvals >= self.min_approvers

    def approver_allowed(self, approver: ResolvedIdentity) -> bool:
        """Check an approver against the snapshotted constraints."""
        return approver.matches(self.bound_approver_ids, self.bound_approver_roles)

    def add_approver(self, identity: str) -> bool:
        """
        Record an approval.

        Returns:
            True if this identity had not approved before
        """
        if identity in self.approver_ids:
            return False
        self.approver_ids.append(identity)
        return True

    def extend(self, now: datetime, approval_ttl: int) -> None:
        """Push the deadline to ``now + approval_ttl``."""
        self.expires_at = now + timedelta(seconds=approval_ttl)

    def summary(self) -> dict[str, Any]:
        """Caller-facing view of the request."""
        return {
            "name": self.role_name,
            "nonce": self.nonce,
            "requester_id": self.requester_id,
            "requester_role": self.requester_role,
            "reason": self.reason,
            "bound_approver_ids": self.bound_approver_ids,
            "bound_approver_roles": self.bound_approver_roles,
            "min_approvers": self.min_approvers,
            "approver_ids": self.approver_ids,
            "approvals": self.approvals,
            "approved": self.is_approved,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class Issue(BaseModel):
    """Record of a released secret, used to reverse the grant on lease end."""

    model_config = {"populate_by_name": True}

    role_name: str = Field(...)
    nonce: str = Field(...)
    requester_id: str = Field(...)
    approver_ids: list[str] = Field(default_factory=list)
    secret_type: str = Field("")
    issued_at: datetime = Field(...)
    expires_at: datetime = Field(..., description="When the issued lease ends")
    correlation: dict[str, Any] = Field(
        default_factory=dict, description="Downstream identifiers of the grant"
    )

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at
