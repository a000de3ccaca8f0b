"""Circuit breaker and backoff used by the gateway client."""

import random
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from paysign.common.errors import CircuitBreakerOpen
from paysign.common.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


class CircuitBreaker:
    """
    Circuit breaker guarding calls to the gateway.

    After ``failure_threshold`` consecutive failures the circuit opens and
    rejects requests for ``recovery_timeout`` seconds. It then goes half-open
    and admits at most ``half_open_max_calls`` probes. A probe is counted when
    it is admitted, so concurrent callers cannot all get through. The circuit
    closes once every probe has been answered and reopens on the first failure.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 3,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before the circuit opens
            recovery_timeout: Seconds the circuit stays open before probing
            half_open_max_calls: Probes admitted (and answered) to close it
            monotonic: Time source in seconds
        """
        self._clock = monotonic
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_max_calls = half_open_max_calls

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None
        self._probes_admitted = 0
        self._probes_answered = 0

    def _enter(self, state: CircuitState) -> None:
        logger.info(
            "Circuit breaker state change",
            previous=self._state.value,
            state=state.value,
            failure_count=self._failure_count,
        )
        self._state = state
        self._probes_admitted = 0
        self._probes_answered = 0
        if state is CircuitState.OPEN:
            self._opened_at = self._clock()
        elif state is CircuitState.CLOSED:
            self._failure_count = 0

    @property
    def state(self) -> CircuitState:
        """Current state; an expired open circuit becomes half-open."""
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at > self._recovery_timeout
        ):
            self._enter(CircuitState.HALF_OPEN)
        return self._state

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "probes_in_flight": self._probes_admitted - self._probes_answered,
            "opened_at": self._opened_at,
        }

    def can_execute(self) -> bool:
        """Whether a request would be admitted right now."""
        state = self.state
        if state is CircuitState.HALF_OPEN:
            return self._probes_admitted < self._half_open_max_calls
        return state is CircuitState.CLOSED

    def ensure_can_execute(self) -> None:
        """
        Admit one request or raise CircuitBreakerOpen.

        While half-open this reserves a probe slot; the caller must follow
        up with record_success, record_failure or release.
        """
        if not self.can_execute():
            raise CircuitBreakerOpen(
                f"Circuit breaker is {self._state.value}, "
                f"retry after {self._recovery_timeout}s"
            )
        if self._state is CircuitState.HALF_OPEN:
            self._probes_admitted += 1

    def release(self) -> None:
        """Give back a probe slot for a request that never completed."""
        if self._state is CircuitState.HALF_OPEN and self._probes_admitted > self._probes_answered:
            self._probes_admitted -= 1

    def record_success(self) -> None:
        """Record a call the gateway answered."""
        self._success_count += 1
        if self._state is CircuitState.HALF_OPEN:
            self._probes_answered += 1
            if self._probes_answered >= self._half_open_max_calls:
                self._enter(CircuitState.CLOSED)
        elif self._state is CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a 5xx answer or transport failure."""
        self._failure_count += 1
        if self._state is CircuitState.HALF_OPEN or (
            self._state is CircuitState.CLOSED and self._failure_count >= self._failure_threshold
        ):
            logger.warning("Gateway failing, circuit opening", threshold=self._failure_threshold)
            self._enter(CircuitState.OPEN)


class ExponentialBackoff:
    """Exponential backoff calculator with jitter."""

    def __init__(
        self,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        multiplier: float = 2.0,
        jitter: float = 0.1,
    ):
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._multiplier = multiplier
        self._jitter = jitter
        self._attempt = 0

    def reset(self) -> None:
        """Reset backoff to initial state."""
        self._attempt = 0

    def next_delay(self) -> float:
        """Calculate next delay, capped at max_delay."""
        delay = min(
            self._base_delay * (self._multiplier**self._attempt),
            self._max_delay,
        )
        self._attempt += 1
        if self._jitter:
            delay += random.uniform(0, delay * self._jitter)
        return min(delay, self._max_delay)

    @property
    def attempt_count(self) -> int:
        """Current attempt count."""
        return self._attempt
