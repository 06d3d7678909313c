"""
Circuit breaker for outbound carrier calls.

States:
- CLOSED: calls pass through
- OPEN: consecutive failures reached the threshold, calls are rejected
- HALF_OPEN: recovery window elapsed, a single in-flight trial call decides
  the next state; other callers are rejected until it finishes

Breakers are process-local and keyed by name, one per carrier.
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised when the breaker is OPEN and rejecting calls."""

    def __init__(self, circuit_name: str, retry_after_seconds: float):
        self.circuit_name = circuit_name
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit '{circuit_name}' is OPEN. Retry after {retry_after_seconds:.0f} seconds."
        )


class CircuitBreaker:
    """
    Failure-count breaker wrapped around async callables.

    Attributes:
        name: Identifier used in logs and the registry
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds to stay OPEN before allowing a trial call
    """

    FAILURE_THRESHOLD = 5
    RECOVERY_TIMEOUT = 60

    def __init__(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold or self.FAILURE_THRESHOLD
        self.recovery_timeout = recovery_timeout or self.RECOVERY_TIMEOUT
        self._clock = clock

        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._trial_in_flight = False

        self.total_calls = 0
        self.total_failures = 0
        self.total_blocked = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    def _transition(self, new_state: CircuitState):
        if new_state != self._state:
            logger.info(f"[CircuitBreaker:{self.name}] State changed: {self._state.value} -> {new_state.value}")
            self._state = new_state

    def get_retry_after_seconds(self) -> float:
        if self._state != CircuitState.OPEN or self.opened_at is None:
            return 0
        return max(0.0, self.recovery_timeout - (self._clock() - self.opened_at))

    def is_call_permitted(self) -> bool:
        """Admit a call, claiming the single HALF_OPEN trial slot if needed."""
        if self._state == CircuitState.OPEN:
            if self.get_retry_after_seconds() > 0:
                return False
            self._transition(CircuitState.HALF_OPEN)
            self._trial_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
        return True

    async def execute(
        self,
        func: Callable,
        *args,
        is_failure: Optional[Callable[[Exception], bool]] = None,
        **kwargs,
    ) -> Any:
        """
        Await func(*args, **kwargs) under breaker protection.

        is_failure decides which exceptions count against the breaker; by
        default every exception does. An exception it rejects is re-raised
        and recorded as a success.

        Raises:
            CircuitOpenError: If the circuit is OPEN, or HALF_OPEN with a trial in flight
            Exception: Re-raises any exception from func
        """
        self.total_calls += 1

        if not self.is_call_permitted():
            self.total_blocked += 1
            retry_after = self.get_retry_after_seconds()
            logger.warning(
                f"[CircuitBreaker:{self.name}] Call blocked - circuit {self._state.value}. "
                f"Retry after {retry_after:.0f}s"
            )
            raise CircuitOpenError(self.name, retry_after)

        trial = self._state == CircuitState.HALF_OPEN
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if is_failure is None or is_failure(e):
                self._on_failure(e)
            else:
                self._on_success()
            raise
        finally:
            if trial:
                self._trial_in_flight = False
        self._on_success()
        return result

    def _on_success(self):
        if self._state == CircuitState.HALF_OPEN:
            logger.info(f"[CircuitBreaker:{self.name}] CLOSED - service recovered")
        self._transition(CircuitState.CLOSED)
        self.failure_count = 0
        self.opened_at = None

    def _on_failure(self, error: Exception):
        self.failure_count += 1
        self.total_failures += 1

        if self._state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.opened_at = self._clock()
            self._transition(CircuitState.OPEN)
            logger.warning(
                f"[CircuitBreaker:{self.name}] OPENED - "
                f"failures={self.failure_count}, error={type(error).__name__}"
            )

    def reset(self):
        """Manually reset the breaker to CLOSED."""
        self._transition(CircuitState.CLOSED)
        self.failure_count = 0
        self.opened_at = None
        self._trial_in_flight = False

    def get_metrics(self) -> dict:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_blocked": self.total_blocked,
            "retry_after_seconds": self.get_retry_after_seconds(),
        }


_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(name: str, **kwargs) -> CircuitBreaker:
    """Get or create a circuit breaker by name."""
    if name not in _circuit_breakers:
        _circuit_breakers[name] = CircuitBreaker(name, **kwargs)
    return _circuit_breakers[name]


def get_all_circuit_breakers() -> Dict[str, CircuitBreaker]:
    return _circuit_breakers.copy()


def reset_circuit_breakers():
    """Drop every registered breaker."""
    _circuit_breakers.clear()
