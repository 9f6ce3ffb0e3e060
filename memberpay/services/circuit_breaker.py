import logging
import threading
from enum import Enum
from typing import Optional

from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Circuit breaker for outbound gateway calls"""

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 60.0):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_time = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def can_execute(self) -> bool:
        """Check if circuit allows execution"""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._last_failure_time:
                    elapsed = (utcnow() - self._last_failure_time).total_seconds()
                    if elapsed >= self.reset_timeout:
                        self._state = CircuitState.HALF_OPEN
                        logger.info("Circuit %s half-open after %.1fs", self.name, elapsed)
                        return True
                return False

            # HALF_OPEN: allow a trial call
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info("Circuit %s closed", self.name)
            self._state = CircuitState.CLOSED
            self._failures = 0

    def record_failure(self, error: Optional[Exception] = None) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = utcnow()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit %s reopened: %s", self.name, error)
            elif self._failures >= self.failure_threshold and self._state != CircuitState.OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit %s opened after %d failures: %s", self.name, self._failures, error)
