"""
Error handling module for the approved-secrets backend.

This module provides an error hierarchy mapping every workflow failure onto a
category and HTTP status code the host can surface to callers.
"""

from .backend_errors import (
    BackendError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    NotificationError,
    PermissionDeniedError,
    StorageError,
    UpstreamFailureError,
    ValidationError,
    VaultAPIError,
)

__all__ = [
    "BackendError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "ExpiredError",
    "UpstreamFailureError",
    "ValidationError",
    "VaultAPIError",
    "StorageError",
    "NotificationError",
]
