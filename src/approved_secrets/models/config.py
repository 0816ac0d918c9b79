"""
Pydantic model for the per-mount backend configuration.

The config is a singleton stored alongside roles and requests. It holds the
service identity used for downstream writes, which is periodically renewed
by the backend's token renewer.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from approved_secrets.constants import (
    DEFAULT_APPROVAL_TTL,
    DEFAULT_VAULT_ADDR,
    SENSITIVE_PLACEHOLDER,
)

from .common import parse_duration, split_comma_list


class BackendConfig(BaseModel):
    """Administrator-set configuration of one backend mount."""

    model_config = {"populate_by_name": True}

    approval_ttl: int = Field(
        DEFAULT_APPROVAL_TTL,
        description="Seconds a request stays open after creation or approval",
    )
    vault_addr: str = Field(DEFAULT_VAULT_ADDR, description="Vault address")
    vault_token: str = Field("", description="Service token for downstream calls")
    vault_policies: list[str] = Field(
        default_factory=list,
        description="Policies attached to scoped tokens created for issuing",
    )
    identity_template: str = Field(
        "",
        description="Identity template; empty means the caller's single alias name",
    )
    slack_webhook_url: str = Field("", description="Slack incoming webhook URL")
    notify_fail_closed: bool = Field(
        True, description="Abort issuance when a Slack notification fails"
    )
    allow_self_approval: bool = Field(
        False, description="Allow requesters to approve their own requests"
    )

    @field_validator("approval_ttl", mode="before")
    @classmethod
    def parse_ttl(cls, v):
        return parse_duration(v)

    @field_validator("vault_policies", mode="before")
    @classmethod
    def parse_policies(cls, v):
        return split_comma_list(v)

    def redacted(self) -> dict[str, Any]:
        """Config view safe to return to callers."""
        data = self.model_dump()
        data["vault_token"] = SENSITIVE_PLACEHOLDER
        data["slack_webhook_url"] = SENSITIVE_PLACEHOLDER
        return data
