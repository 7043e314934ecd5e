"""
Circuit breaker guarding calls to the remote catalog API.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

from comick_offline.exceptions import ComickOfflineError

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Probing whether the API recovered


class CircuitBreakerError(ComickOfflineError):
    """Raised when a call is attempted while the circuit is open."""


class CircuitBreaker:
    """
    Stops hammering the catalog API after repeated failures.

    States:
    - CLOSED: calls pass through
    - OPEN: calls fail fast until ``recovery_timeout`` has elapsed
    - HALF_OPEN: calls pass through; ``success_threshold`` successes close the
      circuit, a single failure re-opens it
    """

    def __init__(
        self,
        name: str = "api",
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        success_threshold: int = 2,
    ):
        """
        Args:
            name: Label used in log messages.
            failure_threshold: Consecutive failures before the circuit opens.
            recovery_timeout: Seconds to wait before probing again.
            success_threshold: Consecutive successes needed to close the circuit.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def reset(self) -> None:
        """Forces the circuit closed and forgets past failures."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        elapsed = time.monotonic() - self._opened_at
        if elapsed >= self.recovery_timeout:
            log.info(
                f"[yellow]Circuit '{self.name}' half-open, "
                f"probing after {elapsed:.0f}s[/yellow]"
            )
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0

    async def _record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    log.info(f"[green]✓ Circuit '{self.name}' closed again.[/green]")
                    self.reset()

    async def _record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                log.warning(
                    f"[yellow]Circuit '{self.name}': probe failed, "
                    "re-opening.[/yellow]"
                )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._success_count = 0
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                log.error(
                    f"[red]✗ Circuit '{self.name}' opened after "
                    f"{self._failure_count} consecutive failures; "
                    f"blocking calls for {self.recovery_timeout:.0f}s.[/red]"
                )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()

    async def __aenter__(self):
        async with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerError(
                    f"Circuit '{self.name}' is open. Retrying is possible after "
                    f"{self.recovery_timeout:.0f} seconds."
                )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self._record_success()
        elif not issubclass(exc_type, asyncio.CancelledError):
            await self._record_failure()
        return False
