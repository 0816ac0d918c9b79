#!/usr/bin/env python3
"""
Approved Secrets - runtime entry point.

Builds an ``ApprovedSecretsBackend`` from process settings, starts its
service token renewal and the metrics server, and runs until SIGTERM or
SIGINT.

Usage:
    python -m approved_secrets.plugin

Environment Variables:
    STORAGE_BACKEND: memory or configmap
    STORAGE_NAMESPACE / STORAGE_CONFIGMAP: ConfigMap location
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    METRICS_PORT: Port of the Prometheus endpoint
"""

import asyncio
import logging
import signal

from approved_secrets.backend import ApprovedSecretsBackend
from approved_secrets.observability.logging import setup_structured_logging
from approved_secrets.observability.metrics import MetricsServer
from approved_secrets.settings import Settings
from approved_secrets.settings import settings as default_settings
from approved_secrets.storage import InMemoryStorage, Storage
from approved_secrets.storage.configmap import ConfigMapStorage
from approved_secrets.utils.circuit_breaker import DownstreamCircuitBreaker
from approved_secrets.utils.slack import SlackNotifier
from approved_secrets.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure structured logging based on settings."""
    setup_structured_logging(
        log_level=settings.log_level.upper(),
        enable_json_formatting=settings.json_logs,
        correlation_id_enabled=settings.correlation_ids,
    )


def create_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "configmap":
        return ConfigMapStorage(
            name=settings.storage_configmap, namespace=settings.storage_namespace
        )
    return InMemoryStorage()


def create_backend(settings: Settings | None = None) -> ApprovedSecretsBackend:
    """
    Build a backend wired to Vault, Slack and the configured storage.

    Every Vault client created by the backend shares one circuit breaker.
    """
    settings = settings or default_settings
    breaker = DownstreamCircuitBreaker(
        "vault",
        fail_max=settings.circuit_breaker_fail_max,
        timeout_duration=settings.circuit_breaker_timeout_seconds,
    )

    def vault_client_factory(vault_addr: str) -> VaultClient:
        return VaultClient(
            vault_addr,
            token="",
            timeout=settings.vault_timeout_seconds,
            verify_ssl=settings.vault_verify_ssl,
            circuit_breaker=breaker,
        )

    return ApprovedSecretsBackend(
        create_storage(settings),
        vault_client_factory,
        notifier=SlackNotifier(timeout=settings.slack_timeout_seconds),
        settings=settings,
    )


async def run(settings: Settings | None = None) -> None:
    """Run the backend until a shutdown signal arrives."""
    settings = settings or default_settings
    configure_logging(settings)

    backend = create_backend(settings)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"Starting approved-secrets backend (storage={settings.storage_backend})")
    await backend.start()
    try:
        async with MetricsServer(port=settings.metrics_port, host=settings.metrics_host):
            await stop_event.wait()
            logger.info("Received shutdown signal")
    finally:
        await backend.stop()
        logger.info("Approved-secrets backend stopped")


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
