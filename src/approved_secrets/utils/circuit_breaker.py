"""
Circuit breaker implementation for downstream API calls.

This module provides a wrapper around aiobreaker to protect the backend
from an unavailable Vault server. It integrates with Prometheus metrics
to track the circuit state.
"""

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import aiobreaker
from aiobreaker.state import CircuitHalfOpenState, CircuitOpenState
from opentelemetry import trace

from approved_secrets.observability.metrics import CIRCUIT_BREAKER_STATE

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DownstreamCircuitBreaker:
    """
    Circuit breaker wrapper for a downstream HTTP service.

    Wraps aiobreaker.CircuitBreaker and updates Prometheus metrics
    on state changes.
    """

    def __init__(self, service: str, fail_max: int, timeout_duration: int):
        """
        Initialize circuit breaker.

        Args:
            service: Name of the protected service (used as metric label)
            fail_max: Number of failures before opening the circuit
            timeout_duration: Seconds to wait before attempting recovery (half-open)
        """
        self.service = service

        class MetricsListener(aiobreaker.CircuitBreakerListener):
            def state_change(self, breaker, old, new):
                try:
                    old_name = getattr(old, "name", type(old).__name__)
                    new_name = getattr(new, "name", type(new).__name__)

                    logger.warning(
                        f"Circuit breaker state changed: {old_name} -> {new_name} "
                        f"(service={service})"
                    )

                    # 0 = Closed, 1 = Open, 2 = Half-Open
                    state_value = 0
                    if isinstance(new, CircuitOpenState):
                        state_value = 1
                    elif isinstance(new, CircuitHalfOpenState):
                        state_value = 2

                    CIRCUIT_BREAKER_STATE.labels(service=service).set(state_value)
                except Exception as e:
                    logger.error(f"Error in circuit breaker listener: {e}")

        self._breaker = aiobreaker.CircuitBreaker(
            fail_max=fail_max,
            timeout_duration=timedelta(seconds=timeout_duration),
            listeners=[MetricsListener()],
        )

        CIRCUIT_BREAKER_STATE.labels(service=service).set(0)

    async def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Call a function with circuit breaker protection.

        Args:
            func: Async function to call
            *args: Arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            aiobreaker.CircuitBreakerError: If the circuit is open
            Exception: Whatever the function raises
        """
        with tracer.start_as_current_span("circuit_breaker_call") as span:
            span.set_attribute("circuit_breaker.service", self.service)
            span.set_attribute("circuit_breaker.state", self.current_state)

            try:
                return await self._breaker.call_async(func, *args, **kwargs)
            except aiobreaker.CircuitBreakerError:
                span.set_attribute("error", True)
                span.set_attribute("circuit_breaker.error", "open")
                raise
            except Exception as e:
                span.set_attribute("error", True)
                span.record_exception(e)
                raise

    @property
    def current_state(self) -> str:
        """Get current state name (lowercase)."""
        return self._breaker.current_state.name.lower()
