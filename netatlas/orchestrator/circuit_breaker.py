"""
Circuit Breaker Pattern Implementation.

Isolates the orchestrator from a failing upstream: after repeated
failures calls are rejected immediately, without touching the network,
until a cooldown elapses and a probe succeeds.
"""

import logging
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from netatlas.utils.exceptions import CircuitBreakerError

logger = logging.getLogger(__name__)

STATE_HISTORY_SIZE = 10


class CircuitState(str, Enum):
    """Circuit breaker state machine states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests due to failures
    HALF_OPEN = "half-open"  # Testing recovery


class CircuitBreaker:
    """
    Circuit breaker for asynchronous upstream calls.

    One instance per upstream source. State is only advanced by call(),
    record_success(), record_failure() and reset(); reading state never
    changes it.

    State Transitions:
        CLOSED → OPEN: After failure_threshold consecutive failures
        OPEN → HALF_OPEN: On the first call after open_duration seconds
        HALF_OPEN → CLOSED: After success_threshold consecutive successes
        HALF_OPEN → OPEN: On any failure

    Attributes:
        name: Identifier for this circuit breaker
        failure_threshold: Number of failures before opening circuit
        open_duration: Seconds to stay open before allowing a probe
        success_threshold: Successful calls needed in HALF_OPEN to close circuit

    Example:
        >>> breaker = CircuitBreaker("peeringdb", failure_threshold=5)
        >>> try:
        ...     result = await breaker.call(lambda: client.fetch("/ix"))
        ... except CircuitBreakerError:
        ...     print("Service unavailable - circuit is open")
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        open_duration: float = 60.0,
        success_threshold: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Identifier for this circuit breaker
            failure_threshold: Consecutive failures before opening (default: 5)
            open_duration: Seconds before a probe is allowed (default: 60)
            success_threshold: Successes needed to close from HALF_OPEN (default: 3)
            clock: Time source in epoch seconds
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.open_duration = open_duration
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._next_attempt_at: Optional[float] = None
        self._last_failure_time: Optional[float] = None

        # Statistics
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0
        self._state_changes: deque[dict[str, Any]] = deque(maxlen=STATE_HISTORY_SIZE)

        logger.info(
            f"Circuit breaker initialized: {name}",
            extra={
                "failure_threshold": failure_threshold,
                "open_duration": open_duration,
                "success_threshold": success_threshold,
            },
        )

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    def _transition_to_half_open(self) -> None:
        old_state = self._state
        self._state = CircuitState.HALF_OPEN
        self._success_count = 0
        self._record_state_change(old_state, CircuitState.HALF_OPEN)
        logger.info(f"Circuit breaker {self.name}: OPEN → HALF_OPEN (attempting recovery)")

    def _transition_to_open(self) -> None:
        old_state = self._state
        self._state = CircuitState.OPEN
        self._next_attempt_at = self._clock() + self.open_duration
        self._success_count = 0
        self._record_state_change(old_state, CircuitState.OPEN)
        logger.warning(
            f"Circuit breaker {self.name}: {old_state.value} → OPEN (threshold exceeded)",
            extra={
                "failure_threshold": self.failure_threshold,
                "open_duration": self.open_duration,
            },
        )

    def _transition_to_closed(self) -> None:
        old_state = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._next_attempt_at = None
        self._record_state_change(old_state, CircuitState.CLOSED)
        logger.info(f"Circuit breaker {self.name}: {old_state.value} → CLOSED (recovered)")

    def _record_state_change(self, from_state: CircuitState, to_state: CircuitState) -> None:
        self._state_changes.append(
            {
                "timestamp": datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
                "from_state": from_state.value,
                "to_state": to_state.value,
                "failure_count": self._failure_count,
                "total_failures": self._total_failures,
            }
        )

    async def call(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Execute an asynchronous operation through the circuit breaker.

        Args:
            operation: No-argument callable returning an awaitable

        Returns:
            Result of the operation

        Raises:
            CircuitBreakerError: If circuit is OPEN (operation is not run)
            Exception: Any exception raised by the operation
        """
        self._total_calls += 1

        if self._state == CircuitState.OPEN:
            if self._clock() < (self._next_attempt_at or 0):
                self._total_rejections += 1
                logger.warning(
                    f"Circuit breaker {self.name} is OPEN - blocking request",
                    extra={"recovery_in": self._get_recovery_time_remaining()},
                )
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.name}' is OPEN - service unavailable",
                    service=self.name,
                    state=CircuitState.OPEN.value,
                    retry_at=self._next_attempt_at,
                )
            self._transition_to_half_open()

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_success(self) -> None:
        """Record successful operation."""
        self._total_successes += 1
        self._failure_count = 0

        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            logger.debug(
                f"Circuit breaker {self.name}: success in HALF_OPEN "
                f"({self._success_count}/{self.success_threshold})"
            )
            if self._success_count >= self.success_threshold:
                self._transition_to_closed()

    def record_failure(self) -> None:
        """Record failed operation."""
        self._total_failures += 1
        self._failure_count += 1
        self._last_failure_time = self._clock()

        logger.debug(
            f"Circuit breaker {self.name}: recorded failure "
            f"({self._failure_count}/{self.failure_threshold})"
        )

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in HALF_OPEN immediately opens circuit
            self._transition_to_open()
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition_to_open()

    def is_available(self) -> bool:
        """True unless the circuit is OPEN and still cooling down."""
        if self._state != CircuitState.OPEN:
            return True
        return self._clock() >= (self._next_attempt_at or 0)

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        old_state = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._next_attempt_at = None
        self._last_failure_time = None
        logger.info(f"Circuit breaker {self.name}: manual reset from {old_state.value} to CLOSED")

    def _get_recovery_time_remaining(self) -> Optional[float]:
        if self._state != CircuitState.OPEN or self._next_attempt_at is None:
            return None
        return round(max(0.0, self._next_attempt_at - self._clock()), 3)

    def get_state(self) -> dict[str, Any]:
        """
        Snapshot of state and counters. Has no side effects.

        Returns:
            Dictionary with state, counters, next attempt time and thresholds
        """
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "next_attempt_at": self._next_attempt_at,
            "failure_threshold": self.failure_threshold,
            "open_duration": self.open_duration,
            "success_threshold": self.success_threshold,
        }

    def get_statistics(self) -> dict[str, Any]:
        """
        Get comprehensive circuit breaker statistics.

        Returns:
            Dictionary with state, counters, and metrics
        """
        executed = self._total_successes + self._total_failures
        failure_rate = (self._total_failures / executed * 100) if executed > 0 else 0

        return {
            "name": self.name,
            "state": self._state.value,
            "is_available": self.is_available(),
            "configuration": {
                "failure_threshold": self.failure_threshold,
                "open_duration": self.open_duration,
                "success_threshold": self.success_threshold,
            },
            "counters": {
                "total_calls": self._total_calls,
                "total_successes": self._total_successes,
                "total_failures": self._total_failures,
                "total_rejections": self._total_rejections,
                "consecutive_failures": self._failure_count,
                "consecutive_successes": self._success_count,
            },
            "metrics": {
                "failure_rate_pct": round(failure_rate, 2),
                "success_rate_pct": round(100 - failure_rate, 2),
            },
            "state_info": {
                "current_state": self._state.value,
                "next_attempt_at": self._next_attempt_at,
                "last_failure_at": self._last_failure_time,
                "recovery_in_seconds": self._get_recovery_time_remaining(),
            },
            "state_changes": list(self._state_changes),
        }

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self.name}, state={self._state.value}, "
            f"failures={self._failure_count}/{self.failure_threshold})"
        )
