"""Circuit breaker for the push notification provider."""

from enum import Enum
from typing import Callable, Any, Optional
from datetime import datetime, timedelta

from chathub.infra.clock import utcnow
from chathub.infra.metrics import circuit_breaker_state


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a service whose circuit is open."""


class CircuitBreaker:
    """
    Stops calling a failing service until a recovery timeout has passed.

    After ``failure_threshold`` consecutive failures the circuit opens. Once
    ``recovery_timeout`` seconds elapse one trial call is let through
    (half-open); ``success_threshold`` successes close the circuit again.
    """

    def __init__(
        self,
        service: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        success_threshold: int = 2,
        expected_exception: type = Exception,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self.expected_exception = expected_exception
        self._clock = clock

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED
        self._publish_state()

    def _publish_state(self) -> None:
        circuit_breaker_state.labels(service=self.service).set(_STATE_GAUGE_VALUES[self.state])

    def _transition(self, state: CircuitState) -> None:
        self.state = state
        self._publish_state()

    def _before_call(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        elapsed = timedelta(0)
        if self.last_failure_time:
            elapsed = self._clock() - self.last_failure_time
        if elapsed.total_seconds() >= self.recovery_timeout:
            self._transition(CircuitState.HALF_OPEN)
            self.success_count = 0
            return
        retry_in = int(self.recovery_timeout - elapsed.total_seconds())
        raise CircuitOpenError(
            f"{self.service} circuit is open. Retry after {retry_in} seconds."
        )

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a sync callable with circuit protection."""
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """Execute a coroutine function with circuit protection."""
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result


push_circuit_breaker = CircuitBreaker(
    service="push",
    failure_threshold=5,
    recovery_timeout=60,
)
