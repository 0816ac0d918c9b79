"""
Structured logging utilities for the approved-secrets backend.

This module provides correlation ID tracking, structured log formatting,
and audit logging of approval decisions.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variable for tracking correlation IDs across async operations
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Paths that should be filtered from access logs (health probes)
HEALTH_PROBE_PATHS = frozenset({"/healthz", "/metrics"})


class HealthProbeFilter(logging.Filter):
    """Logging filter that suppresses health probe and metrics endpoint logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return all(path not in message for path in HEALTH_PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Add correlation ID to the log record.

        Args:
            record: The log record to process

        Returns:
            True to allow the record to be processed
        """
        current_correlation_id = correlation_id.get()
        if not current_correlation_id:
            current_correlation_id = generate_correlation_id()
            correlation_id.set(current_correlation_id)

        record.correlation_id = current_correlation_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter for logs with correlation ID support.

    Formats log records as structured JSON for better parsing and analysis
    in production monitoring systems.
    """

    structured_fields = (
        "role_name",
        "nonce",
        "operation",
        "identity",
        "duration",
        "error_type",
        "audit",
        "vault_path",
        "http_status",
        "channel",
    )

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as structured JSON.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log message
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.structured_fields:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID.

    Returns:
        Unique correlation ID string
    """
    return str(uuid.uuid4())[:8]  # Short 8-character ID for readability


def set_correlation_id(corr_id: str) -> str:
    """Set the correlation ID for the current context."""
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    """Get the current correlation ID, or empty string if none set."""
    return correlation_id.get("")


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Set up structured logging for the backend.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: Whether to use JSON formatting
        correlation_id_enabled: Whether to enable correlation ID tracking
        log_health_probes: Whether to log health probe requests (default: False)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    elif correlation_id_enabled:
        formatter = logging.Formatter(
            "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class AuditLogger:
    """
    Logger for workflow decisions.

    Every open/approve/issue/revoke outcome, allowed or denied, is logged
    with the role, nonce and acting identity so approvals can be audited.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def start_operation(self, operation: str, role_name: str) -> str:
        """Assign a fresh correlation ID to a workflow call."""
        corr_id = set_correlation_id(generate_correlation_id())
        self.logger.debug(
            f"Starting {operation} for role {role_name}",
            extra={"operation": operation, "role_name": role_name},
        )
        return corr_id

    def decision(
        self,
        operation: str,
        role_name: str,
        allowed: bool,
        identity: str | None = None,
        nonce: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log one audit decision.

        Args:
            operation: Workflow operation (open, approve, issue, revoke)
            role_name: Role the operation targeted
            allowed: Whether the operation went through
            identity: Resolved identity of the caller, if known
            nonce: Request nonce, if any
            details: Additional audit details
        """
        level = logging.INFO if allowed else logging.WARNING
        message = (
            f"{operation} {'allowed' if allowed else 'denied'} for role {role_name}"
        )
        if identity:
            message = f"{message} (identity={identity})"

        audit_data: dict[str, Any] = {
            "audit_event": f"approved_secrets_{operation}",
            "operation": operation,
            "role_name": role_name,
            "nonce": nonce,
            "identity": identity,
            "allowed": allowed,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if details:
            audit_data.update(details)

        self.logger.log(level, message, extra={"audit": audit_data})
