"""Reconnect backoff and circuit breaker.

- CircuitBreaker: stop reconnect attempts after repeated failures
- ReconnectPolicy: exponential backoff between attempts

The breaker opens after ``failure_threshold`` consecutive failures, allows a
single test attempt once ``recovery_timeout`` seconds have passed
(half-open), and closes again on the first success.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from wmtp.utils.logging import get_logger, log_event

logger = get_logger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failures detected, server unavailable
    HALF_OPEN = "half_open"  # Testing if server recovered


@dataclass
class CircuitBreaker:
    """Circuit breaker for connection failures."""

    failure_threshold: int = 3
    recovery_timeout: float = 30.0  # seconds

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    last_state_change: Optional[float] = None

    def record_success(self) -> None:
        """Record a successful connection."""

        if self.state != CircuitState.CLOSED:
            logger.info("Circuit breaker: server recovered, closing circuit")
            log_event("circuit_breaker_closed", {"previous_state": self.state.value})

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        self.last_state_change = time.monotonic()

    def record_failure(self) -> None:
        """Record a failed connection attempt."""

        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if (
            self.state == CircuitState.CLOSED
            and self.failure_count >= self.failure_threshold
        ):
            logger.warning(
                f"Circuit breaker: opening after {self.failure_count} failures"
            )
            self.state = CircuitState.OPEN
            self.last_state_change = time.monotonic()
            log_event("circuit_breaker_opened", {"failure_count": self.failure_count})

        elif self.state == CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker: test failed, reopening circuit")
            self.state = CircuitState.OPEN
            self.last_state_change = time.monotonic()
            log_event("circuit_breaker_reopened", {"failure_count": self.failure_count})

    def can_attempt(self) -> bool:
        """Check if a connection attempt is allowed."""

        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            elapsed = time.monotonic() - (self.last_state_change or 0.0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker: entering half-open state for testing")
                self.state = CircuitState.HALF_OPEN
                self.last_state_change = time.monotonic()
                log_event("circuit_breaker_half_open", {"time_since_open": elapsed})
                return True
            return False

        # HALF_OPEN - allow one attempt
        return True

    def time_until_retry(self) -> float:
        """Seconds until an open circuit allows a test attempt."""
        if self.state != CircuitState.OPEN:
            return 0.0
        elapsed = time.monotonic() - (self.last_state_change or 0.0)
        return max(0.0, self.recovery_timeout - elapsed)

    def reset(self) -> None:
        """Reset circuit breaker to initial state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = None
        self.last_state_change = None


@dataclass
class ReconnectPolicy:
    """Exponential backoff schedule for reconnect attempts."""

    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0

    def delays(self) -> Iterator[float]:
        """Yield the wait before each attempt: initial_delay doubling up to max_delay."""
        delay = self.initial_delay
        for _ in range(self.max_attempts):
            yield min(delay, self.max_delay)
            delay *= 2
