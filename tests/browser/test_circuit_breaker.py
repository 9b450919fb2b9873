"""Tests for CircuitBreaker."""

import asyncio

import pytest

from browserguard.browser.circuit_breaker import CircuitBreaker, CircuitStatus
from browserguard.core.errors import (
    CircuitOpenError,
    ElementNotFoundError,
    ValidationError,
)
from tests.conftest import FakeClock


async def _fail(message="Protocol error (Runtime.callFunctionOn): boom"):
    raise RuntimeError(message)


async def _ok():
    return "ok"


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(failure_threshold=3, cooldown_seconds=30, max_cooldown_seconds=300, clock=clock)

    async def _fail_times(self, breaker, n, operation_class="navigation"):
        for _ in range(n):
            with pytest.raises(RuntimeError):
                await breaker.guard(operation_class, _fail)

    @pytest.mark.asyncio
    async def test_passes_result_through(self, breaker):
        """Closed circuits run the call."""
        assert await breaker.guard("navigation", _ok) == "ok"
        assert breaker.status("navigation") == CircuitStatus.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Three counted failures open the circuit and the fourth call is rejected untouched."""
        await self._fail_times(breaker, 3)
        assert breaker.status("navigation") == CircuitStatus.OPEN

        called = False

        async def probe():
            nonlocal called
            called = True

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.guard("navigation", probe)

        assert called is False
        assert exc_info.value.retry_after == pytest.approx(30)
        assert exc_info.value.to_payload().retryable is True

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        """A success in between keeps the circuit closed."""
        await self._fail_times(breaker, 2)
        await breaker.guard("navigation", _ok)
        await self._fail_times(breaker, 2)

        assert breaker.status("navigation") == CircuitStatus.CLOSED
        assert breaker.state("navigation").failure_count == 2

    @pytest.mark.asyncio
    async def test_operation_classes_are_independent(self, breaker):
        """An open navigation circuit does not block content calls."""
        await self._fail_times(breaker, 3, "navigation")

        assert await breaker.guard("content", _ok) == "ok"
        assert breaker.status("content") == CircuitStatus.CLOSED

    @pytest.mark.asyncio
    async def test_uncounted_failures_do_not_trip(self, breaker):
        """Caller mistakes and missing elements say nothing about browser health."""

        async def invalid():
            raise ValidationError("navigate requires browser_init")

        async def missing():
            raise ElementNotFoundError("#missing")

        for _ in range(5):
            with pytest.raises(ValidationError):
                await breaker.guard("interaction", invalid)
            with pytest.raises(ElementNotFoundError):
                await breaker.guard("interaction", missing)

        assert breaker.status("interaction") == CircuitStatus.CLOSED
        assert breaker.state("interaction").failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(self, breaker, clock):
        """After the cooldown one probe is admitted; success closes the circuit."""
        await self._fail_times(breaker, 3)
        clock.advance(30)

        assert await breaker.guard("navigation", _ok) == "ok"
        state = breaker.state("navigation")
        assert state.status == CircuitStatus.CLOSED
        assert state.trip_count == 0
        assert state.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_probe_failure_doubles_cooldown(self, breaker, clock):
        """A failed probe re-opens with twice the cooldown."""
        await self._fail_times(breaker, 3)
        clock.advance(30)

        with pytest.raises(RuntimeError):
            await breaker.guard("navigation", _fail)

        assert breaker.status("navigation") == CircuitStatus.OPEN
        assert breaker.retry_after("navigation") == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_cooldown_is_capped(self, clock):
        """The exponential cooldown never exceeds the maximum."""
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=100, max_cooldown_seconds=250, clock=clock)

        for expected in (100, 200, 250, 250):
            with pytest.raises(RuntimeError):
                await breaker.guard("lifecycle", _fail)
            assert breaker.retry_after("lifecycle") == pytest.approx(expected)
            clock.advance(expected)

    @pytest.mark.asyncio
    async def test_only_one_probe_in_flight(self, breaker, clock):
        """A second call during the half-open probe is rejected."""
        await self._fail_times(breaker, 3)
        clock.advance(31)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probed"

        probe = asyncio.create_task(breaker.guard("navigation", slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.guard("navigation", _ok)
        assert "probe in flight" in exc_info.value.message

        release.set()
        assert await probe == "probed"
        assert breaker.status("navigation") == CircuitStatus.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_probe_frees_slot(self, breaker, clock):
        """Cancelling the probe lets the next call probe instead."""
        await self._fail_times(breaker, 3)
        clock.advance(31)

        probe = asyncio.create_task(breaker.guard("navigation", asyncio.Event().wait))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert await breaker.guard("navigation", _ok) == "ok"

    @pytest.mark.asyncio
    async def test_uncounted_probe_failure_closes(self, breaker, clock):
        """A probe that fails for a reason unrelated to browser health closes the circuit."""
        await self._fail_times(breaker, 3)
        clock.advance(30)

        async def missing_element():
            raise ElementNotFoundError("#gone")

        with pytest.raises(ElementNotFoundError):
            await breaker.guard("navigation", missing_element)

        state = breaker.state("navigation")
        assert state.status == CircuitStatus.CLOSED
        assert state.trip_count == 0

    @pytest.mark.asyncio
    async def test_discarded_outcomes_are_not_recorded(self, breaker):
        """Outcomes flagged by ``discard`` neither count nor reset the failure count."""
        await self._fail_times(breaker, 2)

        with pytest.raises(RuntimeError):
            await breaker.guard("navigation", _fail, discard=lambda: True)
        assert await breaker.guard("navigation", _ok, discard=lambda: True) == "ok"

        state = breaker.state("navigation")
        assert state.status == CircuitStatus.CLOSED
        assert state.failure_count == 2

    @pytest.mark.asyncio
    async def test_discarded_probe_frees_slot(self, breaker, clock):
        """A discarded probe leaves the circuit half-open for the next caller."""
        await self._fail_times(breaker, 3)
        clock.advance(30)

        with pytest.raises(RuntimeError):
            await breaker.guard("navigation", _fail, discard=lambda: True)

        state = breaker.state("navigation")
        assert state.status == CircuitStatus.HALF_OPEN
        assert state.probe_in_flight is False
        assert await breaker.guard("navigation", _ok) == "ok"
        assert breaker.status("navigation") == CircuitStatus.CLOSED

    @pytest.mark.asyncio
    async def test_reset_and_snapshot(self, breaker):
        """snapshot reports every class seen; reset clears them."""
        await self._fail_times(breaker, 3)
        await breaker.guard("content", _ok)

        snapshot = breaker.snapshot()
        assert snapshot["navigation"]["status"] == "open"
        assert snapshot["navigation"]["retry_after"] == pytest.approx(30)
        assert snapshot["content"]["status"] == "closed"

        breaker.reset("navigation")
        assert breaker.status("navigation") == CircuitStatus.CLOSED

        breaker.reset()
        assert breaker.snapshot() == {}

    def test_rejects_invalid_threshold(self):
        """A threshold below one is a configuration error."""
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)
