"""
Approved-secrets backend.

``ApprovedSecretsBackend`` is the object the host talks to. It owns the
storage accessors, the Vault clients built from the stored config, and the
workflow services, and wraps every operation with a correlation ID, audit
logging and Prometheus metrics.
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import pydantic

from approved_secrets.constants import (
    AUDIT_LOGGER_NAME,
    CONFIG_NAMESPACE,
    ISSUE_NAMESPACE,
    REQUEST_NAMESPACE,
    ROLE_NAMESPACE,
    SECRET_TYPE_REQUEST,
    SERVICE_TOKEN_DISPLAY_NAME,
    SERVICE_TOKEN_TTL,
)
from approved_secrets.errors import BackendError, NotFoundError, ValidationError
from approved_secrets.models import (
    BackendConfig,
    CallerContext,
    Clock,
    Issue,
    LeasedSecret,
    Request,
    Role,
    utc_now,
)
from approved_secrets.observability.logging import AuditLogger
from approved_secrets.observability.metrics import metrics_collector
from approved_secrets.services import (
    ApprovalEngine,
    DownstreamSecretSource,
    IssuanceEngine,
    LeaseRevoker,
    RequestLedger,
    RoleRegistry,
    TokenRenewer,
    VaultDownstreamSource,
)
from approved_secrets.settings import Settings
from approved_secrets.settings import settings as default_settings
from approved_secrets.storage import Storage, StorageAccessor
from approved_secrets.utils.identity import IdentityResolver, VaultIdentityResolver
from approved_secrets.utils.slack import SlackNotifier
from approved_secrets.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)

CONFIG_KEY = "config"

VaultClientFactory = Callable[[str], VaultClient]


class ApprovedSecretsBackend:
    """
    Multi-party approval gate in front of downstream secrets.

    Example:
        backend = ApprovedSecretsBackend(InMemoryStorage(), vault_client_factory)
        lease = await backend.open_request("k8s-admin", alice)
        await backend.approve("k8s-admin", lease.data["nonce"], bob)
        secret = await backend.issue("k8s-admin", lease.data["nonce"], alice)
    """

    def __init__(
        self,
        storage: Storage,
        vault_client_factory: VaultClientFactory,
        notifier: SlackNotifier | None = None,
        resolver: IdentityResolver | None = None,
        downstream: DownstreamSecretSource | None = None,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        """
        Initialize backend.

        Args:
            storage: Durable key-value store
            vault_client_factory: Builds an unauthenticated client for a Vault address
            notifier: Slack notifier (default: one built from settings)
            resolver: Identity resolver (default: Vault identity store)
            downstream: Downstream secret source (default: Vault HTTP API)
            settings: Process settings (default: the global settings)
            clock: Source of the current UTC time
        """
        self.settings = settings or default_settings
        self.clock = clock
        self._vault_client_factory = vault_client_factory
        self._vault: VaultClient | None = None

        self.config_store = StorageAccessor(storage, CONFIG_NAMESPACE)
        self.roles = StorageAccessor(storage, ROLE_NAMESPACE)
        self.requests = StorageAccessor(storage, REQUEST_NAMESPACE)
        self.issues = StorageAccessor(storage, ISSUE_NAMESPACE)

        self.notifier = notifier or SlackNotifier(
            timeout=self.settings.slack_timeout_seconds
        )
        self.resolver = resolver or VaultIdentityResolver(self.service_client)
        self.downstream = downstream or VaultDownstreamSource(self.service_client)

        self.registry = RoleRegistry(self.roles, self.settings.max_lease_ttl_seconds)
        self.ledger = RequestLedger(
            self.requests,
            self.issues,
            self.registry,
            self.resolver,
            self.load_config,
            clock=clock,
        )
        self.approvals = ApprovalEngine(self.ledger)
        self.issuance = IssuanceEngine(
            self.ledger,
            self.downstream,
            self.notifier,
            self.settings.max_lease_ttl_seconds,
        )
        self.revoker = LeaseRevoker(self.requests, self.issues, self.downstream)
        self.renewer = TokenRenewer(
            self.service_client,
            self.settings.token_renew_interval_seconds,
            increment=self.settings.token_renew_increment,
        )
        self.audit = AuditLogger(AUDIT_LOGGER_NAME)

    # Lifecycle

    async def start(self) -> None:
        self.renewer.start()

    async def stop(self) -> None:
        await self.renewer.stop()
        if self._vault is not None:
            await self._vault.close()
            self._vault = None

    # Config

    async def load_config(self) -> BackendConfig:
        """
        Load the backend config.

        Raises:
            NotFoundError: If the backend has not been configured
        """
        config = await self.config_store.get(BackendConfig, CONFIG_KEY)
        if config is None:
            raise NotFoundError("config")
        return config

    async def _vault_for(self, vault_addr: str) -> VaultClient:
        if self._vault is not None:
            if self._vault.vault_addr == vault_addr.rstrip("/"):
                return self._vault

            logger.info(f"Vault address changed to {vault_addr}, replacing client")
            await self._vault.close()
        self._vault = self._vault_client_factory(vault_addr)
        return self._vault

    async def service_client(self) -> VaultClient:
        """Vault client authenticated with the stored service token."""
        config = await self.load_config()
        client = await self._vault_for(config.vault_addr)
        return client.with_token(config.vault_token)

    async def configure(self, data: dict[str, Any]) -> str:
        """
        Write the backend config.

        The supplied ``vault_token`` is exchanged for a renewable orphan
        token scoped to ``vault_policies``; only the new token is stored.

        Returns:
            The newly created service token

        Raises:
            ValidationError: If fields are malformed or vault_token is missing
            VaultAPIError: If the service token could not be created
        """
        async with self._operation("configure", CONFIG_KEY):
            if not data.get("vault_token"):
                raise ValidationError("must be set", field="vault_token")

            async with self.config_store.lock(CONFIG_KEY):
                current = await self.config_store.get(BackendConfig, CONFIG_KEY)
                merged = current.model_dump() if current else {}
                merged.update(data)
                try:
                    config = BackendConfig.model_validate(merged)
                except pydantic.ValidationError as e:
                    first = e.errors()[0]
                    field = ".".join(str(p) for p in first.get("loc", ())) or None
                    raise ValidationError(first.get("msg", "invalid"), field=field) from e

                vault = await self._vault_for(config.vault_addr)
                client = vault.with_token(config.vault_token)
                config.vault_token = await client.create_orphan_token(
                    policies=config.vault_policies,
                    ttl=SERVICE_TOKEN_TTL,
                    display_name=SERVICE_TOKEN_DISPLAY_NAME,
                )
                await self.config_store.put(config, CONFIG_KEY)

            self.audit.decision("configure", CONFIG_KEY, allowed=True)
            return config.vault_token

    async def read_config(self) -> dict[str, Any]:
        """Current config with sensitive values masked."""
        config = await self.load_config()
        return config.redacted()

    # Roles

    async def write_role(self, name: str, role: Role | dict[str, Any]) -> list[str]:
        async with self._operation("write_role", name):
            warnings = await self.registry.put(name, role)
            self.audit.decision("write_role", name, allowed=True)
            return warnings

    async def read_role(self, name: str) -> Role:
        return await self.registry.get(name)

    async def list_roles(self) -> list[str]:
        return await self.registry.list()

    async def delete_role(self, name: str) -> None:
        async with self._operation("delete_role", name):
            await self.registry.delete(name)
            self.audit.decision("delete_role", name, allowed=True)

    async def role_overview(
        self, bound_requester_role: str | None = None
    ) -> dict[str, dict[str, Any]]:
        """Requestable roles and their approval rules, keyed by role name."""
        overview = await self.registry.overview(bound_requester_role)
        return {
            name: role.model_dump(
                include={
                    "secret_type",
                    "secret_environment",
                    "secret_required_fields",
                    "exclusive_lease",
                    "min_approvers",
                    "bound_requester_ids",
                    "bound_requester_roles",
                    "bound_approver_ids",
                    "bound_approver_roles",
                }
            )
            for name, role in overview.items()
        }

    # Workflow

    async def open_request(
        self,
        role_name: str,
        requester_ctx: CallerContext,
        reason: str | None = None,
    ) -> LeasedSecret:
        """
        Open an approval request.

        Returns:
            A request lease whose data is the request summary; revoking the
            lease deletes the request
        """
        async with self._operation("open", role_name):
            request = await self.ledger.open(role_name, requester_ctx, reason)
            config = await self.load_config()
            self.audit.decision(
                "open",
                role_name,
                allowed=True,
                identity=request.requester_id,
                nonce=request.nonce,
                details={"reason": reason} if reason else None,
            )
            return LeasedSecret(
                secret_type=SECRET_TYPE_REQUEST,
                data=request.summary(),
                ttl=config.approval_ttl,
                renewable=False,
                internal_data={"name": request.role_name, "nonce": request.nonce},
            )

    async def read_request(self, role_name: str, nonce: str) -> Request:
        async with self._operation("read_request", role_name, nonce):
            return await self.ledger.read(role_name, nonce)

    async def list_requests(self, role_name: str) -> list[str]:
        return await self.ledger.list(role_name)

    async def tidy_requests(self, role_name: str | None = None) -> dict[str, list[str]]:
        """
        Delete expired requests, for one role or for every role with requests.

        Returns:
            Purged nonces keyed by role name
        """
        async with self._operation("tidy", role_name or "*"):
            role_names = [role_name] if role_name else await self.requests.list()
            purged: dict[str, list[str]] = {}
            for name in role_names:
                nonces = await self.ledger.purge_expired(name)
                if nonces:
                    purged[name] = nonces
            return purged

    async def approve(
        self,
        role_name: str,
        nonce: str,
        approver_ctx: CallerContext,
        reason: str | None = None,
    ) -> Request:
        async with self._operation("approve", role_name, nonce):
            request = await self.approvals.approve(
                role_name, nonce, approver_ctx, reason
            )
            return request

    async def issue(
        self,
        role_name: str,
        nonce: str,
        requester_ctx: CallerContext,
        ttl: int | None = None,
        fields: dict[str, Any] | None = None,
    ) -> LeasedSecret:
        async with self._operation("issue", role_name, nonce):
            lease = await self.issuance.issue(
                role_name, nonce, requester_ctx, ttl=ttl, fields=fields
            )
            self.audit.decision(
                "issue",
                role_name,
                allowed=True,
                nonce=nonce,
                details={"ttl": lease.ttl},
            )
            return lease

    async def list_issues(self, role_name: str) -> list[str]:
        return await self.issues.list(role_name)

    async def read_issue(self, role_name: str, nonce: str) -> Issue:
        issue = await self.issues.get(Issue, role_name, nonce)
        if issue is None:
            raise NotFoundError("issue", f"{role_name}/{nonce}")
        return issue

    # Lease callbacks

    async def revoke(self, lease: LeasedSecret) -> None:
        role_name = str(lease.internal_data.get("name") or "")
        async with self._operation("revoke", role_name):
            await self.revoker.revoke(lease)
            self.audit.decision(
                "revoke",
                role_name,
                allowed=True,
                nonce=lease.internal_data.get("nonce"),
                details={"secret_type": lease.secret_type},
            )

    async def renew(self, lease: LeasedSecret) -> LeasedSecret:
        return await self.revoker.renew(lease)

    @asynccontextmanager
    async def _operation(
        self, operation: str, role_name: str, nonce: str | None = None
    ) -> AsyncIterator[None]:
        self.audit.start_operation(operation, role_name)
        async with metrics_collector.track_operation(operation, role_name):
            try:
                yield
            except BackendError as e:
                self.audit.decision(
                    operation,
                    role_name,
                    allowed=False,
                    nonce=nonce,
                    details={"error": e.message, "category": e.category},
                )
                raise
