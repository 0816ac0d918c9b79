"""
Prometheus metrics for the approved-secrets backend.

This module provides metrics for the approval workflow (opened, approved,
issued, revoked), service token renewal and downstream circuit breaker
state, plus a small HTTP server exposing them.
"""

import logging
import time
from contextlib import asynccontextmanager

from aiohttp.web import Application, AppRunner, Request, Response, TCPSite
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

WORKFLOW_OPERATIONS_TOTAL = Counter(
    "approved_secrets_operations_total",
    "Total number of workflow operations",
    ["operation", "role_name", "result"],
    registry=None,
)

WORKFLOW_OPERATION_DURATION = Histogram(
    "approved_secrets_operation_duration_seconds",
    "Time spent on workflow operations",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=None,
)

APPROVALS_RECORDED_TOTAL = Counter(
    "approved_secrets_approvals_recorded_total",
    "Distinct approvals recorded on requests",
    ["role_name"],
    registry=None,
)

SECRETS_ISSUED_TOTAL = Counter(
    "approved_secrets_issued_total",
    "Secrets released after sufficient approvals",
    ["role_name", "secret_type"],
    registry=None,
)

LEASES_REVOKED_TOTAL = Counter(
    "approved_secrets_leases_revoked_total",
    "Leases revoked by the host",
    ["secret_type"],
    registry=None,
)

TOKEN_RENEWAL_FAILURES_TOTAL = Counter(
    "approved_secrets_token_renewal_failures_total",
    "Failed background renewals of the service token",
    [],
    registry=None,
)

TOKEN_RENEWAL_LAST_SUCCESS_TIMESTAMP = Gauge(
    "approved_secrets_token_renewal_last_success_timestamp",
    "Unix timestamp of the last successful service token renewal",
    [],
    registry=None,
)

CIRCUIT_BREAKER_STATE = Gauge(
    "approved_secrets_circuit_breaker_state",
    "Downstream circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["service"],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()

        for metric in [
            WORKFLOW_OPERATIONS_TOTAL,
            WORKFLOW_OPERATION_DURATION,
            APPROVALS_RECORDED_TOTAL,
            SECRETS_ISSUED_TOTAL,
            LEASES_REVOKED_TOTAL,
            TOKEN_RENEWAL_FAILURES_TOTAL,
            TOKEN_RENEWAL_LAST_SUCCESS_TIMESTAMP,
            CIRCUIT_BREAKER_STATE,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the backend."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_operation(self, operation: str, role_name: str):
        """
        Context manager to track one workflow operation.

        Args:
            operation: Workflow operation (open, approve, issue, revoke)
            role_name: Role the operation targets
        """
        start_time = time.monotonic()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = getattr(e, "category", "error")
            raise
        finally:
            WORKFLOW_OPERATIONS_TOTAL.labels(
                operation=operation, role_name=role_name, result=result
            ).inc()
            WORKFLOW_OPERATION_DURATION.labels(operation=operation).observe(
                time.monotonic() - start_time
            )

    def record_approval(self, role_name: str) -> None:
        APPROVALS_RECORDED_TOTAL.labels(role_name=role_name).inc()

    def record_issue(self, role_name: str, secret_type: str) -> None:
        SECRETS_ISSUED_TOTAL.labels(
            role_name=role_name, secret_type=secret_type or "generic"
        ).inc()

    def record_revocation(self, secret_type: str) -> None:
        LEASES_REVOKED_TOTAL.labels(secret_type=secret_type).inc()

    def record_token_renewal(self, success: bool) -> None:
        if success:
            TOKEN_RENEWAL_LAST_SUCCESS_TIMESTAMP.set(time.time())
        else:
            TOKEN_RENEWAL_FAILURES_TOTAL.inc()


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
            return Response(
                body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST}
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        self.runner = AppRunner(self.app)
        await self.runner.setup()

        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Metrics server started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
