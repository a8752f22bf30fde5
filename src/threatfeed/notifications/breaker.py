"""
Circuit breaker guarding calls to external notification endpoints.
"""

import logging
import time
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Explicit closed/open/half_open state machine.

    - closed: calls go through; ``failure_threshold`` consecutive failures open
      the circuit
    - open: calls are refused until ``reset_timeout`` seconds have passed,
      then one trial call is allowed (half_open)
    - half_open: a success closes the circuit, a failure re-opens it

    The clock is injected so transitions can be driven in tests.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        """Return True if a call may be attempted now."""
        if self._state == CircuitState.OPEN:
            if self.clock() - self._opened_at >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit half-open, allowing trial request")
                return True
            return False
        return True

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Circuit closed after successful trial request")
        self._state = CircuitState.CLOSED
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(f"Opening circuit after {self._failures} failures")
            self._state = CircuitState.OPEN
            self._opened_at = self.clock()

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
