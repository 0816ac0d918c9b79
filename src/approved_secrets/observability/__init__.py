"""
Observability utilities for the approved-secrets backend.

This module provides metrics and structured audit logging capabilities for
production monitoring and troubleshooting.
"""

from .logging import AuditLogger, setup_structured_logging
from .metrics import MetricsServer, get_metrics_registry, metrics_collector

__all__ = [
    "AuditLogger",
    "MetricsServer",
    "get_metrics_registry",
    "metrics_collector",
    "setup_structured_logging",
]
