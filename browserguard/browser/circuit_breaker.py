"""Per-operation-class circuit breaker for calls against the live browser.

Each operation class (lifecycle, navigation, interaction, content, captcha)
has its own state. All timing is read from an injected monotonic clock, so
tests can move time forward without sleeping.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, TypeVar

from browserguard.core.errors import CircuitOpenError, classify_failure, counts_toward_breaker
from browserguard.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

OPERATION_CLASSES = ("lifecycle", "navigation", "interaction", "content", "captcha")


class CircuitStatus(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerState:
    """State of one operation class."""
    operation_class: str
    failure_threshold: int
    status: CircuitStatus = CircuitStatus.CLOSED
    failure_count: int = 0
    cooldown_deadline: float | None = None
    trip_count: int = 0
    probe_in_flight: bool = False
    last_failure: str | None = None


class CircuitBreaker:
    """Fail fast after repeated failures, then let a single probe through.

    Closed: calls run; counted failures increment ``failure_count`` and
    reaching the threshold opens the circuit. Open: calls are rejected with
    CircuitOpenError until the cooldown deadline. Half-open: the first call
    after the deadline is the only probe; success closes the circuit, failure
    re-opens it with a doubled cooldown (capped).
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        cooldown_seconds: float = 30.0,
        max_cooldown_seconds: float = 300.0,
        clock: Callable[[], float] | None = None,
    ):
        """Initialize the breaker.

        Args:
            failure_threshold: Consecutive counted failures that open a circuit
            cooldown_seconds: Cooldown after the first trip
            max_cooldown_seconds: Upper bound for the exponential cooldown
            clock: Monotonic clock returning seconds
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.max_cooldown_seconds = max(max_cooldown_seconds, cooldown_seconds)
        self._clock = clock or time.monotonic
        self._states: dict[str, CircuitBreakerState] = {}

    def _state_for(self, operation_class: str) -> CircuitBreakerState:
        state = self._states.get(operation_class)
        if state is None:
            state = CircuitBreakerState(
                operation_class=operation_class,
                failure_threshold=self.failure_threshold,
            )
            self._states[operation_class] = state
        return state

    def _cooldown_for(self, trip_count: int) -> float:
        return min(self.cooldown_seconds * 2 ** (trip_count - 1), self.max_cooldown_seconds)

    async def guard(
        self,
        operation_class: str,
        fn: Callable[[], Awaitable[T]],
        discard: Callable[[], bool] | None = None,
    ) -> T:
        """Run ``fn`` unless the circuit for ``operation_class`` is open.

        Args:
            operation_class: Name of the guarded operation class
            fn: Zero-argument coroutine function performing the operation
            discard: Checked once ``fn`` finishes; when it returns True the
                outcome is not recorded (the resource it ran against is gone)

        Returns:
            Whatever ``fn`` returns

        Raises:
            CircuitOpenError: If the circuit is open or a probe is already running
        """
        state = self._state_for(operation_class)
        now = self._clock()

        if state.status == CircuitStatus.OPEN:
            deadline = state.cooldown_deadline or now
            if now < deadline:
                logger.debug(
                    "circuit_rejected",
                    operation_class=operation_class,
                    retry_after=round(deadline - now, 3),
                )
                raise CircuitOpenError(operation_class, deadline - now)
            state.status = CircuitStatus.HALF_OPEN
            logger.info("circuit_half_open", operation_class=operation_class)

        is_probe = False
        if state.status == CircuitStatus.HALF_OPEN:
            if state.probe_in_flight:
                raise CircuitOpenError(operation_class, 0.0, reason="recovery probe in flight")
            state.probe_in_flight = True
            is_probe = True

        try:
            result = await fn()
        except asyncio.CancelledError:
            if is_probe:
                state.probe_in_flight = False
            raise
        except Exception as exc:
            if discard is not None and discard():
                self._discard_outcome(state, is_probe)
            else:
                self._record_failure(state, exc, is_probe)
            raise

        if discard is not None and discard():
            self._discard_outcome(state, is_probe)
        else:
            self._record_success(state)
        return result

    def _discard_outcome(self, state: CircuitBreakerState, is_probe: bool) -> None:
        if is_probe:
            state.probe_in_flight = False
        logger.debug("circuit_outcome_discarded", operation_class=state.operation_class)

    def _record_success(self, state: CircuitBreakerState) -> None:
        if state.status != CircuitStatus.CLOSED:
            logger.info(
                "circuit_closed",
                operation_class=state.operation_class,
                trip_count=state.trip_count,
            )
        state.status = CircuitStatus.CLOSED
        state.failure_count = 0
        state.trip_count = 0
        state.cooldown_deadline = None
        state.probe_in_flight = False

    def _record_failure(self, state: CircuitBreakerState, exc: Exception, is_probe: bool) -> None:
        if not counts_toward_breaker(exc):
            # Says nothing about browser health, so a probe ending here closes the circuit.
            self._record_success(state)
            return

        state.failure_count += 1
        state.last_failure = f"{type(exc).__name__}: {exc}"
        logger.debug(
            "circuit_failure_counted",
            operation_class=state.operation_class,
            failure_count=state.failure_count,
            category=classify_failure(exc).value,
        )

        if is_probe or state.failure_count >= state.failure_threshold:
            self._trip(state)

    def _trip(self, state: CircuitBreakerState) -> None:
        state.trip_count += 1
        cooldown = self._cooldown_for(state.trip_count)
        state.status = CircuitStatus.OPEN
        state.cooldown_deadline = self._clock() + cooldown
        state.probe_in_flight = False
        logger.warning(
            "circuit_opened",
            operation_class=state.operation_class,
            failure_count=state.failure_count,
            trip_count=state.trip_count,
            cooldown_seconds=cooldown,
            last_failure=state.last_failure,
        )

    def status(self, operation_class: str) -> CircuitStatus:
        """Current status of an operation class."""
        return self._state_for(operation_class).status

    def state(self, operation_class: str) -> CircuitBreakerState:
        """Full state of an operation class."""
        return self._state_for(operation_class)

    def retry_after(self, operation_class: str) -> float:
        """Seconds until an open circuit admits a probe (0 when not open)."""
        state = self._state_for(operation_class)
        if state.status != CircuitStatus.OPEN or state.cooldown_deadline is None:
            return 0.0
        return max(0.0, state.cooldown_deadline - self._clock())

    def reset(self, operation_class: str | None = None) -> None:
        """Reset one operation class, or all of them."""
        if operation_class is None:
            self._states.clear()
        else:
            self._states.pop(operation_class, None)
        logger.info("circuit_reset", operation_class=operation_class or "all")

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Diagnostic view of every operation class seen so far."""
        result: dict[str, dict[str, Any]] = {}
        for name, state in self._states.items():
            data = asdict(state)
            data["status"] = state.status.value
            data["retry_after"] = round(self.retry_after(name), 3)
            result[name] = data
        return result
