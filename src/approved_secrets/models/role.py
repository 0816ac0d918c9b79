"""
Pydantic model for approval roles.

A role is a named, administrator-defined policy binding a downstream secret
target (path, method, static data) to approval rules (bound requesters,
bound approvers, minimum approver count, exclusivity).
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from approved_secrets.constants import (
    ALLOWED_SECRET_PATH_METHODS,
    DEFAULT_MIN_APPROVERS,
    DEFAULT_SECRET_MAX_TTL,
    DEFAULT_SECRET_TTL,
    METHOD_GET,
)
from approved_secrets.errors import ValidationError

from .common import parse_duration, split_comma_list


class Role(BaseModel):
    """Approval policy for one downstream secret."""

    model_config = {"populate_by_name": True}

    secret_path: str = Field(..., description="The path of the requested secret")
    secret_path_method: str = Field(
        METHOD_GET, description="The method used against secret_path (GET or POST)"
    )
    secret_data: dict[str, Any] | None = Field(
        None,
        description="Static input data sent to secret_path (requires POST)",
    )
    secret_type: str = Field("", description="Type of secret (e.g. vault-token)")
    secret_environment: str = Field("", description="Environment name")
    secret_required_fields: list[str] = Field(
        default_factory=list,
        description="Extra fields the requester must supply when issuing",
    )
    secret_ttl: int = Field(
        DEFAULT_SECRET_TTL, description="Default TTL in seconds of issued secrets"
    )
    secret_max_ttl: int = Field(
        DEFAULT_SECRET_MAX_TTL, description="Max TTL in seconds of issued secrets"
    )
    exclusive_lease: bool = Field(
        False,
        description="Only allow a new request once the last issue has expired",
    )
    min_approvers: int = Field(
        DEFAULT_MIN_APPROVERS, description="Minimum number of distinct approvers"
    )
    bound_requester_ids: list[str] = Field(default_factory=list)
    bound_requester_roles: list[str] = Field(default_factory=list)
    bound_approver_ids: list[str] = Field(default_factory=list)
    bound_approver_roles: list[str] = Field(default_factory=list)
    notify_slack_channels: list[str] = Field(default_factory=list)

    @field_validator("secret_path_method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("secret_ttl", "secret_max_ttl", mode="before")
    @classmethod
    def parse_ttl(cls, v):
        return parse_duration(v)

    @field_validator(
        "secret_required_fields",
        "bound_requester_ids",
        "bound_requester_roles",
        "bound_approver_ids",
        "bound_approver_roles",
        mode="before",
    )
    @classmethod
    def parse_comma_list(cls, v):
        return split_comma_list(v)

    def validate_policy(self) -> None:
        """
        Check cross-field invariants of the policy.

        Raises:
            ValidationError: If the policy cannot be enforced as written
        """
        if self.secret_path_method not in ALLOWED_SECRET_PATH_METHODS:
            raise ValidationError(
                "expected POST or GET", field="secret_path_method"
            )

        if self.secret_path_method == METHOD_GET and self.secret_data is not None:
            raise ValidationError("must be POST", field="method for secret_data")

        if self.min_approvers < 1:
            raise ValidationError("must be >= 1", field="min_approvers")

        if self.secret_max_ttl > 0 and self.secret_ttl > self.secret_max_ttl:
            raise ValidationError(
                "secret_ttl should not be greater than secret_max_ttl"
            )

    @property
    def effective_ttl(self) -> int:
        """Default lease TTL: secret_ttl, or secret_max_ttl when unset."""
        return self.secret_ttl or self.secret_max_ttl
