"""
Backend error hierarchy with categorization and status codes.

This module defines the error types used throughout the approved-secrets
backend. Every error carries a category, the HTTP status code the host should
answer with, and optional guidance for the caller.
"""


class BackendError(Exception):
    """
    Base error class for all backend-related exceptions.

    Provides categorization, status mapping, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        status_code: int = 500,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize backend error.

        Args:
            message: Human-readable error description
            category: Error category (not_found, permission_denied, conflict, ...)
            status_code: HTTP status code the host should respond with
            user_action: What the caller should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.status_code = status_code
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class NotFoundError(BackendError):
    """Role, request, issue or config is absent."""

    def __init__(self, kind: str, name: str | None = None):
        message = f"no {kind} found" if name is None else f"no {kind} found: {name}"
        super().__init__(message=message, category="not_found", status_code=404)
        self.kind = kind
        self.name = name


class PermissionDeniedError(BackendError):
    """Caller is not bound to the role, lacks approvals, or is not the requester."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="permission_denied",
            status_code=403,
            user_action=user_action,
        )


class ConflictError(BackendError):
    """Operation conflicts with existing state (e.g. exclusive lease active)."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="conflict",
            status_code=409,
            user_action=user_action,
        )


class ExpiredError(BackendError):
    """Request is past its approval deadline."""

    def __init__(self, role_name: str, nonce: str):
        super().__init__(
            message=f"request for role {role_name!r} has expired",
            category="expired",
            status_code=410,
            user_action="Open a new request and collect approvals again",
        )
        self.role_name = role_name
        self.nonce = nonce


class ValidationError(BackendError):
    """Malformed role, config or request fields."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"bad {field}: {message}"
        super().__init__(
            message=message,
            category="invalid",
            status_code=400,
            user_action=user_action,
        )
        self.field = field


class UpstreamFailureError(BackendError):
    """Error communicating with a downstream or identity service."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int = 502,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="upstream",
            status_code=status_code,
            user_action=action,
            cause=cause,
        )
        self.service = service


class VaultAPIError(UpstreamFailureError):
    """Error communicating with the Vault HTTP API."""

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ):
        if path:
            message = f"{message} (path: {path})"
        if upstream_status:
            message = f"{message} (status: {upstream_status})"
        super().__init__(service="Vault", message=message, cause=cause)
        self.upstream_status = upstream_status
        self.path = path


class StorageError(UpstreamFailureError):
    """Error reading or writing the backing key-value store."""

    def __init__(self, message: str, reason: str | None = None):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            service="Storage",
            message=message,
            status_code=500,
            user_action="Check storage backend availability and permissions",
        )


class NotificationError(UpstreamFailureError):
    """Error posting a Slack notification."""

    def __init__(self, channel: str, message: str):
        super().__init__(
            service="Slack",
            message=f"failed to send notification to channel {channel!r}: {message}",
            user_action="Check slack_webhook_url and the role's notify_slack_channels",
        )
        self.channel = channel
