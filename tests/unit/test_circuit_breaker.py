"""
Unit tests for the database CircuitBreaker.
"""

import pytest

from oncedrop.core.database.circuit_breaker import CircuitBreaker, CircuitState

pytestmark = pytest.mark.unit


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def breaker(fake_clock):
    return CircuitBreaker(
        failure_threshold=3,
        recovery_timeout_ms=1000,
        half_open_max_requests=1,
        clock=fake_clock,
    )


async def trip(breaker, times=3):
    for _ in range(times):
        await breaker.record_failure()


class TestCircuitBreaker:
    async def test_starts_closed(self, breaker):
        assert breaker.state is CircuitState.CLOSED
        assert await breaker.allow_request() is True

    async def test_opens_after_threshold(self, breaker):
        await trip(breaker, 2)
        assert breaker.state is CircuitState.CLOSED

        await trip(breaker, 1)
        assert breaker.state is CircuitState.OPEN
        assert await breaker.allow_request() is False

    async def test_success_resets_consecutive_failures(self, breaker):
        await trip(breaker, 2)
        await breaker.record_success()
        await trip(breaker, 2)
        assert breaker.state is CircuitState.CLOSED

    async def test_half_open_after_recovery_window(self, breaker, fake_clock):
        await trip(breaker)
        fake_clock.now += 1.5

        assert await breaker.allow_request() is True
        assert breaker.state is CircuitState.HALF_OPEN
        assert await breaker.allow_request() is False

    async def test_half_open_success_closes(self, breaker, fake_clock):
        await trip(breaker)
        fake_clock.now += 1.5
        await breaker.allow_request()

        await breaker.record_success()

        assert breaker.state is CircuitState.CLOSED

    async def test_half_open_failure_reopens(self, breaker, fake_clock):
        await trip(breaker)
        fake_clock.now += 1.5
        await breaker.allow_request()

        await breaker.record_failure()

        assert breaker.state is CircuitState.OPEN

    async def test_metrics_and_reset(self, breaker):
        await trip(breaker)
        await breaker.allow_request()

        metrics = breaker.get_metrics()
        assert metrics.failure_count == 3
        assert metrics.rejected_requests == 1

        await breaker.reset()
        assert breaker.state is CircuitState.CLOSED
