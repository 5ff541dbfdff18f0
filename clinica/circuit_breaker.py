"""Circuit breaker around the clinic backend.

Purpose: Fail fast while the backend is down instead of stacking timeouts on
every list load and form submission.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Backend failing, requests fail immediately with BackendUnavailable
- HALF_OPEN: Timeout elapsed, one trial request allowed

Only failures the predicate classifies as backend failures (transport errors,
5xx) count towards opening. A 404 or a 400 is the backend working correctly.
"""
import time
import logging
from typing import Any, Callable, Optional
from enum import Enum

from clinica.exceptions import BackendUnavailable

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker for backend calls."""

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60,
        is_failure: Optional[Callable[[Exception], bool]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            failure_threshold: Consecutive backend failures before opening
            timeout: Seconds to wait before allowing a half-open trial request
            is_failure: Classifies an exception as a backend failure
                        (default: every exception counts)
            clock: Monotonic time source, injectable for tests
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.is_failure = is_failure or (lambda exc: True)
        self.clock = clock
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> str:
        """Get current state as string."""
        return self._state.value

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute func with breaker protection.

        Raises:
            BackendUnavailable: If circuit is open
            Exception: Whatever func raises
        """
        if self._state == CircuitState.OPEN:
            if self._time_until_retry() <= 0:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit breaker transitioning to HALF_OPEN")
            else:
                raise BackendUnavailable(
                    "El servidor no está disponible. Intenta de nuevo más tarde.",
                    detail=f"Retry after {self._time_until_retry():.1f}s"
                )

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            if self.is_failure(exc):
                self._on_failure()
            else:
                self._on_success()
            raise

        self._on_success()
        return result

    def _time_until_retry(self) -> float:
        if self.last_failure_time is None:
            return 0
        elapsed = self.clock() - self.last_failure_time
        return max(0, self.timeout - elapsed)

    def _on_success(self):
        self.failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            logger.info("Circuit breaker closed after successful half-open attempt")

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self.clock()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning("Circuit breaker opened after failed half-open attempt")
        elif self.failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.error(
                f"Circuit breaker opened after {self.failure_count} failures. "
                f"Timeout: {self.timeout}s"
            )
