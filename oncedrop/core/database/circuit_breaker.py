"""
Circuit Breaker for Database Operations
=======================================

Purpose
-------
Stops hammering an unavailable datastore. After a run of consecutive
failures, transactions are rejected immediately for a recovery window, so a
grant attempt during an outage fails fast and the reward rule can degrade
without waiting on connection timeouts.

Circuit States
--------------
**CLOSED**: all requests pass; consecutive failures are counted.
**OPEN**: requests are rejected until the recovery timeout elapses.
**HALF_OPEN**: a limited number of trial requests pass; one success closes
the circuit, one failure re-opens it.

Configuration
-------------
- CIRCUIT_BREAKER_FAILURE_THRESHOLD
- CIRCUIT_BREAKER_RECOVERY_TIMEOUT_MS
- CIRCUIT_BREAKER_HALF_OPEN_MAX_REQUESTS
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from oncedrop.core.config.config import Config
from oncedrop.core.logging.logger import get_logger

logger = get_logger(__name__)


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open and requests are rejected."""

    def __init__(self, message: str = "Circuit breaker is open") -> None:
        super().__init__(message)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerMetrics:
    state: CircuitState
    failure_count: int
    success_count: int
    consecutive_failures: int
    total_requests: int
    rejected_requests: int


class CircuitBreaker:
    """
    Async-safe circuit breaker; state changes happen under an asyncio.Lock.
    """

    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        recovery_timeout_ms: Optional[int] = None,
        half_open_max_requests: Optional[int] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold or Config.CIRCUIT_BREAKER_FAILURE_THRESHOLD
        self._recovery_timeout_ms = (
            recovery_timeout_ms or Config.CIRCUIT_BREAKER_RECOVERY_TIMEOUT_MS
        )
        self._half_open_max_requests = (
            half_open_max_requests or Config.CIRCUIT_BREAKER_HALF_OPEN_MAX_REQUESTS
        )
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = asyncio.Lock()

        self._consecutive_failures = 0
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None

        self._total_requests = 0
        self._rejected_requests = 0
        self._half_open_test_count = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    async def allow_request(self) -> bool:
        async with self._lock:
            self._total_requests += 1

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if not self._should_attempt_recovery():
                    self._rejected_requests += 1
                    return False
                self._transition(CircuitState.HALF_OPEN)

            if self._half_open_test_count < self._half_open_max_requests:
                self._half_open_test_count += 1
                return True

            self._rejected_requests += 1
            return False

    def _should_attempt_recovery(self) -> bool:
        if self._last_failure_time is None:
            return True
        elapsed_ms = (self._clock() - self._last_failure_time) * 1000
        return elapsed_ms >= self._recovery_timeout_ms

    async def record_success(self) -> None:
        async with self._lock:
            self._success_count += 1
            self._consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._consecutive_failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self._failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        self._half_open_test_count = 0
        if new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker {old_state.value} -> {new_state.value}",
            extra={
                "old_state": old_state.value,
                "new_state": new_state.value,
                "consecutive_failures": self._consecutive_failures,
                "failure_threshold": self._failure_threshold,
                "recovery_timeout_ms": self._recovery_timeout_ms,
            },
        )

    def get_metrics(self) -> CircuitBreakerMetrics:
        return CircuitBreakerMetrics(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            consecutive_failures=self._consecutive_failures,
            total_requests=self._total_requests,
            rejected_requests=self._rejected_requests,
        )

    async def reset(self) -> None:
        """Force the circuit CLOSED. Administrative/testing use only."""
        async with self._lock:
            logger.warning("Circuit breaker manually reset", extra={"old_state": self._state.value})
            self._transition(CircuitState.CLOSED)
            self._last_failure_time = None
