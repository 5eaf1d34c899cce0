"""Circuit breaker guarding calls to the payment rail."""
import logging
import threading
import time
from enum import Enum

from skillsupply.constants import (
    CIRCUIT_BREAKER_FAILURE_THRESHOLD,
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
)

logger = logging.getLogger(__name__)

MAX_RECOVERY_TIMEOUT: float = 600.0


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Thread-safe circuit breaker state machine.

    Counts consecutive failures; once ``failure_threshold`` is reached the
    circuit opens and calls are refused until the recovery timeout elapses.
    The timeout doubles on every re-open, up to ``MAX_RECOVERY_TIMEOUT``.

    Args:
        name: Human-readable name for logging.
        failure_threshold: Number of consecutive failures before opening.
        recovery_timeout: Seconds to wait before transitioning to half-open.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        recovery_timeout: float = CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.state = CircuitState.CLOSED
        self.failure_count: int = 0
        self.last_failure_time: float = 0.0
        self.current_recovery_timeout: float = recovery_timeout
        self._lock = threading.Lock()

    def can_execute(self) -> bool:
        """Check whether a call is allowed through the breaker."""
        with self._lock:
            if self.state == CircuitState.CLOSED:
                return True
            if self.state == CircuitState.OPEN:
                elapsed = time.monotonic() - self.last_failure_time
                if elapsed >= self.current_recovery_timeout:
                    self.state = CircuitState.HALF_OPEN
                    logger.info("Circuit breaker '%s' state=HALF_OPEN action=transition", self.name)
                    return True
                return False
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.state != CircuitState.CLOSED:
                logger.info("Circuit breaker '%s' state=CLOSED action=recovered", self.name)
            self.failure_count = 0
            self.state = CircuitState.CLOSED
            self.current_recovery_timeout = self.recovery_timeout

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.monotonic()

            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state == CircuitState.OPEN or self.state == CircuitState.HALF_OPEN:
                    self.current_recovery_timeout = min(
                        self.current_recovery_timeout * 2, MAX_RECOVERY_TIMEOUT
                    )
                self.state = CircuitState.OPEN
                logger.warning(
                    "Circuit breaker '%s' state=OPEN action=opened failures=%d recovery_timeout=%.0fs",
                    self.name, self.failure_count, self.current_recovery_timeout,
                )
