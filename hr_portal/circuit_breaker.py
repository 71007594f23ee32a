"""
Circuit breaker pattern for calls into the leave record store.
Stops hammering the hosted database while it is down and fails fast instead.
"""

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from hr_portal.errors import StorageError

logger = logging.getLogger(__name__)


class CircuitBreakerOpenError(StorageError):
    """Raised when circuit breaker blocks execution."""


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing recovery


def _always_failure(exc: BaseException) -> bool:
    return True


class CircuitBreaker:
    """
    Circuit breaker implementation.

    States:
    - CLOSED: Requests pass through normally
    - OPEN: All requests fail immediately (store is down)
    - HALF_OPEN: Allow one trial request to check if the store recovered

    Transitions:
    - CLOSED -> OPEN: After failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: After timeout seconds
    - HALF_OPEN -> CLOSED: If the trial request succeeds
    - HALF_OPEN -> OPEN: If the trial request fails

    Only exceptions for which ``is_failure`` returns True are counted.
    A lost compare-and-set or a policy denial is an answer from a healthy
    store, not an outage, and must not trip the breaker.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        name: str = "CircuitBreaker",
        is_failure: Callable[[BaseException], bool] = _always_failure,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of consecutive failures before opening circuit
            timeout: Seconds to wait before attempting recovery
            name: Name for logging
            is_failure: Predicate deciding whether an exception counts as a failure
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.name = name
        self.is_failure = is_failure

        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.last_failure_time: float | None = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

        logger.info(
            "CircuitBreaker '%s' initialized: threshold=%s, timeout=%ss",
            name,
            failure_threshold,
            timeout,
        )

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If the circuit is OPEN
            Exception: Whatever ``func`` raised
        """
        with self._lock:
            if self.state == CircuitState.OPEN:
                if self._should_attempt_reset():
                    logger.info("CircuitBreaker '%s': OPEN -> HALF_OPEN", self.name)
                    self.state = CircuitState.HALF_OPEN
                    self._trial_in_flight = False
                else:
                    raise CircuitBreakerOpenError(
                        f"CircuitBreaker '{self.name}' is OPEN. Store unavailable."
                    )

            if self.state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitBreakerOpenError(
                        f"CircuitBreaker '{self.name}' is HALF_OPEN. Recovery trial in progress."
                    )
                self._trial_in_flight = True

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self.is_failure(e):
                self._record_failure(e)
            else:
                self._record_success()
            raise

        self._record_success()
        return result

    def _record_success(self):
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                logger.info("CircuitBreaker '%s': HALF_OPEN -> CLOSED", self.name)
            self._reset()

    def _record_failure(self, error: BaseException):
        """Record a failure and potentially open circuit."""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()
            self._trial_in_flight = False
            logger.error(
                "CircuitBreaker '%s' failure (%s/%s): %s",
                self.name,
                self.failure_count,
                self.failure_threshold,
                error,
            )

            if self.state == CircuitState.HALF_OPEN:
                logger.warning("CircuitBreaker '%s': HALF_OPEN -> OPEN", self.name)
                self.state = CircuitState.OPEN
            elif self.failure_count >= self.failure_threshold:
                logger.warning("CircuitBreaker '%s': Threshold exceeded. CLOSED -> OPEN", self.name)
                self.state = CircuitState.OPEN

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt recovery."""
        if self.last_failure_time is None:
            return True

        return time.time() - self.last_failure_time >= self.timeout

    def _reset(self):
        self.failure_count = 0
        self._trial_in_flight = False
        self.state = CircuitState.CLOSED
        self.last_failure_time = None

    def get_state(self) -> dict:
        """Get current circuit breaker state for monitoring."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": self.last_failure_time,
        }

