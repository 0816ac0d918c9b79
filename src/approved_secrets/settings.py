"""Centralized backend settings using pydantic-settings.

This module provides a single source of truth for process-level configuration
loaded from environment variables. The per-mount backend Config (Vault
credentials, approval TTL, Slack webhook) lives in storage instead and is
managed through ``ApprovedSecretsBackend.configure``.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from approved_secrets.constants import (
    DEFAULT_MOUNT_MAX_LEASE_TTL,
    SERVICE_TOKEN_RENEW_INCREMENT,
)


class Settings(BaseSettings):
    """Backend configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Storage
    storage_backend: Literal["memory", "configmap"] = Field(
        default="memory",
        validation_alias="STORAGE_BACKEND",
        description="Key-value store backing roles, requests and issues",
    )
    storage_namespace: str = Field(
        default="vault-system",
        validation_alias="STORAGE_NAMESPACE",
        description="Kubernetes namespace of the storage ConfigMap",
    )
    storage_configmap: str = Field(
        default="approved-secrets-storage",
        validation_alias="STORAGE_CONFIGMAP",
        description="Name of the ConfigMap used when STORAGE_BACKEND=configmap",
    )

    # Mount limits
    max_lease_ttl_seconds: int = Field(
        default=DEFAULT_MOUNT_MAX_LEASE_TTL,
        validation_alias="MAX_LEASE_TTL_SECONDS",
        description="Mount-level ceiling applied to role secret_max_ttl",
    )

    # Service token renewal
    token_renew_interval_seconds: int = Field(
        default=3600,
        validation_alias="TOKEN_RENEW_INTERVAL_SECONDS",
        description="Interval in seconds between service token renewals",
    )
    token_renew_increment: str = Field(
        default=SERVICE_TOKEN_RENEW_INCREMENT,
        validation_alias="TOKEN_RENEW_INCREMENT",
        description="TTL increment requested on each service token renewal",
    )

    # Vault HTTP client
    vault_timeout_seconds: int = Field(
        default=30,
        validation_alias="VAULT_TIMEOUT_SECONDS",
        description="Request timeout for Vault API calls",
    )
    vault_verify_ssl: bool = Field(
        default=True,
        validation_alias="VAULT_VERIFY_SSL",
        description="Verify TLS certificates of the Vault server",
    )
    circuit_breaker_fail_max: int = Field(
        default=5,
        validation_alias="CIRCUIT_BREAKER_FAIL_MAX",
        description="Consecutive Vault failures before the circuit opens",
    )
    circuit_breaker_timeout_seconds: int = Field(
        default=60,
        validation_alias="CIRCUIT_BREAKER_TIMEOUT_SECONDS",
        description="Seconds before an open circuit allows a trial call",
    )

    # Slack notifications
    slack_timeout_seconds: int = Field(
        default=10,
        validation_alias="SLACK_TIMEOUT_SECONDS",
        description="Request timeout for Slack webhook posts",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )


# Global settings instance - initialized once at module import
settings = Settings()
