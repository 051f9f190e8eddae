"""
Supervised dialing for the time-series store write socket.

A dial is retried with bounded exponential backoff. A whole failed retry
sequence counts as one failure for the circuit breaker; once the breaker is
open, dials are refused outright until the cooldown has passed, after which a
single trial dial is let through.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator, TypeVar

from emberpulse.core.errors import CircuitOpenError, TsdbConnectionError
from emberpulse.core.metrics import tsdb_circuit_open

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class ReconnectPolicy:
    max_attempts: int = 5
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 30.0
    multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        """Sleep before each retry; ``max_attempts - 1`` values."""
        delay = self.base_delay_seconds
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay_seconds)
            delay *= self.multiplier


class CircuitBreaker:
    def __init__(
        self,
        *,
        failure_threshold: int = 2,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = max(int(failure_threshold), 1)
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self._cooldown_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info("TSDB circuit half-open, allowing a trial connection")
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def can_proceed(self) -> bool:
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("TSDB circuit closed")
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self.last_error = None
        tsdb_circuit_open.set(0)

    def record_failure(self, reason: str) -> None:
        self._consecutive_failures += 1
        self.last_error = reason
        if (
            self.state is CircuitState.HALF_OPEN
            or self._consecutive_failures >= self._failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            tsdb_circuit_open.set(1)
            logger.error(
                "TSDB circuit open after %d failed connection sequence(s): %s",
                self._consecutive_failures,
                reason,
            )


class ReconnectSupervisor:
    def __init__(
        self,
        *,
        policy: ReconnectPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy or ReconnectPolicy()
        self.breaker = breaker or CircuitBreaker()
        self._sleep = sleep

    async def run(self, dial: Callable[[], Awaitable[T]]) -> T:
        state = self.breaker.state
        if state is CircuitState.OPEN:
            raise CircuitOpenError(
                f"OpenTSDB circuit open: {self.breaker.last_error or 'connection failures'}"
            )

        # A half-open circuit gets a single trial dial, no retry sequence.
        delays = iter(()) if state is CircuitState.HALF_OPEN else self.policy.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await dial()
            except (OSError, asyncio.TimeoutError) as e:
                reason = str(e) or e.__class__.__name__
                delay = next(delays, None)
                if delay is None:
                    self.breaker.record_failure(reason)
                    raise TsdbConnectionError(
                        f"OpenTSDB connection error after {attempt} attempt(s): {reason}"
                    ) from e
                logger.warning(
                    "OpenTSDB connection attempt %d failed (%s), retrying in %.2fs",
                    attempt,
                    reason,
                    delay,
                )
                await self._sleep(delay)
            else:
                self.breaker.record_success()
                return result
