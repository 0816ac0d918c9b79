"""
Background renewal of the backend's service token.

The service token created by ``configure`` is a renewable orphan token with
a 72h TTL. A task owned by the backend renews it on a fixed interval. Renewal
failures are logged and counted, never raised: the next tick tries again.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from approved_secrets.constants import SERVICE_TOKEN_RENEW_INCREMENT
from approved_secrets.errors import BackendError, NotFoundError
from approved_secrets.observability.metrics import metrics_collector
from approved_secrets.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)


class TokenRenewer:
    """Periodically renews the service token via ``auth/token/renew-self``."""

    def __init__(
        self,
        client_provider: Callable[[], Awaitable[VaultClient]],
        interval: int,
        increment: str = SERVICE_TOKEN_RENEW_INCREMENT,
    ):
        """
        Initialize renewer.

        Args:
            client_provider: Coroutine returning a client holding the service token
            interval: Seconds between renewals
            increment: Requested TTL increment
        """
        self._client_provider = client_provider
        self.interval = interval
        self.increment = increment
        self._task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def renew_once(self) -> bool:
        """
        Renew the service token once.

        Returns:
            True if the token was renewed
        """
        try:
            client = await self._client_provider()
        except NotFoundError:
            logger.debug("Backend not configured yet, skipping token renewal")
            return False
        except BackendError as e:
            logger.error(f"Failed to load service token for renewal: {e}")
            metrics_collector.record_token_renewal(success=False)
            return False

        try:
            await client.renew_self(self.increment)
        except BackendError as e:
            logger.error(f"Failed to renew service token: {e}")
            metrics_collector.record_token_renewal(success=False)
            return False

        metrics_collector.record_token_renewal(success=True)
        logger.debug("Renewed service token")
        return True

    async def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                await self.renew_once()
            except Exception:
                logger.exception("Service token renewal failed unexpectedly")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="service-token-renewer")
        logger.info(f"Service token renewal started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopped.set()
        await self._task
        self._task = None
        logger.info("Service token renewal stopped")
