"""
Tests for the carrier circuit breaker.
"""
import asyncio

import pytest

from partedeuro.core.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    get_all_circuit_breakers,
    get_circuit_breaker,
)
from partedeuro.core.exceptions import CsrfTokenUnavailable, ProviderError, ShippingUnavailable
from partedeuro.core.http_client import is_carrier_outage


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def succeed():
    return "ok"


async def fail():
    raise RuntimeError("carrier down")


async def reject():
    raise ValueError("no service to this destination")


class TestCircuitBreaker:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker("auspost", failure_threshold=3, recovery_timeout=30, clock=clock)

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(succeed)
        assert exc_info.value.retry_after_seconds == 30
        assert breaker.total_blocked == 1

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)
        assert await breaker.execute(succeed) == "ok"

        with pytest.raises(RuntimeError):
            await breaker.execute(fail)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_trial_closes_on_success(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)

        clock.now += 31
        assert await breaker.execute(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)

        clock.now += 31
        with pytest.raises(RuntimeError):
            await breaker.execute(fail)
        assert breaker.state == CircuitState.OPEN
        assert breaker.get_retry_after_seconds() == 30

    @pytest.mark.asyncio
    async def test_rejected_errors_do_not_count(self, breaker):
        for _ in range(5):
            with pytest.raises(ValueError):
                await breaker.execute(reject, is_failure=lambda e: not isinstance(e, ValueError))

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.total_failures == 0

    @pytest.mark.asyncio
    async def test_rejected_error_closes_half_open(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)

        clock.now += 31
        with pytest.raises(ValueError):
            await breaker.execute(reject, is_failure=lambda e: not isinstance(e, ValueError))
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_admits_one_trial(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)
        clock.now += 31

        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return "ok"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.execute(succeed)

        release.set()
        assert await trial == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.execute(succeed) == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_trial_frees_the_slot(self, breaker, clock):
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.execute(fail)
        clock.now += 31

        trial = asyncio.create_task(breaker.execute(asyncio.sleep, 10))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert await breaker.execute(succeed) == "ok"


class TestCarrierOutage:
    @pytest.mark.parametrize("error, outage", [
        (asyncio.TimeoutError(), True),
        (ProviderError("connection reset", carrier="auspost"), True),
        (ProviderError("bad gateway", carrier="auspost", status_code=502), True),
        (ProviderError("slow down", carrier="interparcel", status_code=429), True),
        (CsrfTokenUnavailable("no meta tag", carrier="interparcel", status_code=200), True),
        (ProviderError("invalid postcode", carrier="auspost", status_code=404), False),
        (ProviderError("Unsupported country", carrier="interparcel", status_code=200), False),
        (ShippingUnavailable("no service", carrier="auspost_international"), False),
    ])
    def test_classification(self, error, outage):
        assert is_carrier_outage(error) is outage


class TestRegistry:
    def test_same_name_same_breaker(self):
        first = get_circuit_breaker("interparcel", failure_threshold=2)
        assert get_circuit_breaker("interparcel") is first
        assert "interparcel" in get_all_circuit_breakers()
