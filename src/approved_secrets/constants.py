"""
Constants used throughout the approved-secrets backend.

This module defines all constant values used by the backend including:
- Storage namespaces for config, roles, requests and issues
- Lease secret types handed to the host
- Default durations and Vault paths
- Error message templates
"""

# Storage namespaces (top-level key prefixes)
CONFIG_NAMESPACE = "config"
ROLE_NAMESPACE = "role"
REQUEST_NAMESPACE = "request"
ISSUE_NAMESPACE = "issue"

# Lease secret types registered with the host
SECRET_TYPE_REQUEST = "approved_secret_request"
SECRET_TYPE_ISSUE = "approved_secret_issue"

# Role secret types with special issuance handling
ROLE_SECRET_TYPE_VAULT_TOKEN = "vault-token"

# HTTP methods allowed for the downstream secret path
METHOD_GET = "GET"
METHOD_POST = "POST"
ALLOWED_SECRET_PATH_METHODS = (METHOD_GET, METHOD_POST)

# Default durations (in seconds)
DEFAULT_APPROVAL_TTL = 3600  # 1 hour
DEFAULT_SECRET_TTL = 8 * 3600  # 8 hours
DEFAULT_SECRET_MAX_TTL = 12 * 3600  # 12 hours
DEFAULT_MOUNT_MAX_LEASE_TTL = 32 * 24 * 3600  # 32 days, Vault's default
DEFAULT_MIN_APPROVERS = 1

# Vault service identity
DEFAULT_VAULT_ADDR = "http://127.0.0.1:8200"
SERVICE_TOKEN_TTL = "72h"
SERVICE_TOKEN_RENEW_INCREMENT = "72h"
SERVICE_TOKEN_DISPLAY_NAME = "approved-secrets-plugin"
SCOPED_TOKEN_ROLE_PREFIX = "approved-secrets"

# Nonce entropy in bytes (128 bits, hex encoded so keys stay lowercase)
NONCE_BYTES = 16

# Storage retry for optimistic version checks
MAX_WRITE_CONFLICT_RETRIES = 3

# Identity templates in secret_data leaves must match this pattern exactly
TEMPLATE_MARKER_PATTERN = r"^{{.+?}}$"

# Identity group metadata key holding the caller's role
PRIMARY_ROLE_METADATA_KEY = "primaryRole"

# Masked value for sensitive config fields
SENSITIVE_PLACEHOLDER = "<sensitive>"

# Slack notification defaults
SLACK_USERNAME = "Vault Approved Secrets Plugin"

# Error message templates
ERROR_EXCLUSIVE_LEASE_ACTIVE = (
    "exclusive lease still active for role {} (expires at {})"
)
ERROR_INSUFFICIENT_APPROVALS = "insufficient approvals: {} of {} required"
ERROR_NOT_RENEWABLE = "{} cannot be renewed - request again instead"

# Logger receiving audit decisions
AUDIT_LOGGER_NAME = "approved_secrets.audit"
