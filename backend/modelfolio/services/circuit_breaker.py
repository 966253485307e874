# backend/modelfolio/services/circuit_breaker.py
"""
Circuit breaker guarding calls to the price quote provider.

An ingestion run fetches hundreds of symbols one after another. When the
provider goes down mid-run, every remaining symbol would otherwise burn its
full retry budget (attempts x (timeout + delay)) before failing. The breaker
counts consecutive provider failures and, once open, makes the remaining
fetches fail immediately with ``CircuitBreakerOpen``.

States:
    CLOSED    - Normal operation, calls pass through
    OPEN      - Threshold reached, calls rejected until recovery_timeout
    HALF_OPEN - One probe call allowed; success closes, failure re-opens

The breaker lives on a single event loop and is used with ``async with``,
so no lock is needed.

Usage:
    breaker = CircuitBreaker(name="yahoo", failure_threshold=10)

    async with breaker:
        quote = await provider.fetch(ticker, exchange)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """
    Raised when the circuit is open and the call was not attempted.

    Attributes:
        breaker_name: Name of the circuit breaker
        time_remaining: Seconds until a probe call is allowed again
    """

    code = "CircuitOpen"

    def __init__(self, breaker_name: str, time_remaining: float) -> None:
        self.breaker_name = breaker_name
        self.time_remaining = time_remaining
        super().__init__(
            f"Circuit breaker '{breaker_name}' is open. "
            f"Retry in {time_remaining:.1f} seconds."
        )


@dataclass
class CircuitBreaker:
    """
    Consecutive-failure circuit breaker for async calls.

    Attributes:
        name: Identifier used in logs and errors
        failure_threshold: Consecutive failures before the circuit opens
        recovery_timeout: Seconds the circuit stays open before a probe
        excluded_exceptions: Exceptions that prove the service answered
            (e.g. unknown ticker) and therefore reset the failure count
        clock: Monotonic time source, replaceable in tests
    """

    name: str
    failure_threshold: int = 10
    recovery_timeout: float = 60.0
    excluded_exceptions: tuple[type[BaseException], ...] = ()
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _probe_in_flight: bool = field(default=False, init=False)
    rejected_calls: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.recovery_timeout < 0:
            raise ValueError("recovery_timeout cannot be negative")

    @property
    def state(self) -> CircuitState:
        """Current state, promoting OPEN to HALF_OPEN once the timeout expired."""
        if self._state == CircuitState.OPEN and self._time_until_probe() <= 0:
            self._transition_to(CircuitState.HALF_OPEN)
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _time_until_probe(self) -> float:
        return max(0.0, self.recovery_timeout - (self.clock() - self._opened_at))

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
        if new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0
        self._probe_in_flight = False

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(f"CircuitBreaker '{self.name}' state change: {old_state.value} -> {new_state.value}")

    async def __aenter__(self) -> "CircuitBreaker":
        state = self.state
        if state == CircuitState.OPEN or (state == CircuitState.HALF_OPEN and self._probe_in_flight):
            self.rejected_calls += 1
            raise CircuitBreakerOpen(self.name, self._time_until_probe())
        if state == CircuitState.HALF_OPEN:
            self._probe_in_flight = True
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> bool:
        if isinstance(exc_val, asyncio.CancelledError):
            self._probe_in_flight = False
            return False
        if exc_val is None or isinstance(exc_val, self.excluded_exceptions):
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)
            self._consecutive_failures = 0
            return False

        self._consecutive_failures += 1
        if self._state == CircuitState.HALF_OPEN or self._consecutive_failures >= self.failure_threshold:
            self._transition_to(CircuitState.OPEN)
        return False

    def reset(self) -> None:
        """Close the circuit, e.g. at the start of a new ingestion run."""
        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)
        self._consecutive_failures = 0
