"""Per-target circuit breaker.

Stops sending traffic to a target after repeated failures, then lets a
single trial call through once the recovery timeout has passed.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog

from harvester.core.exceptions import BreakerOpenError, ExtractionError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BreakerState:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None  # Monotonic seconds
    times_opened: int = 0


class CircuitBreaker:
    """Circuit breaker keyed by target id.

    Navigation, timeout and block errors count as failures. Extraction
    errors mean the site answered, so they pass through without touching
    the breaker. Any other exception is counted as a failure.
    """

    NEUTRAL_ERRORS = (ExtractionError,)

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the circuit breaker.

        Args:
            failure_threshold: Consecutive failures that open the circuit
            recovery_timeout: Seconds an open circuit waits before a trial call
            clock: Monotonic clock in seconds
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._states: Dict[str, BreakerState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_state(self, key: str) -> BreakerState:
        if key not in self._states:
            self._states[key] = BreakerState()
            self._locks[key] = asyncio.Lock()
        return self._states[key]

    def state(self, key: str) -> CircuitState:
        return self._get_state(key).state

    async def execute(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation through the target's breaker.

        Args:
            key: Target id
            operation: Zero-argument coroutine function to run

        Returns:
            Whatever the operation returns

        Raises:
            BreakerOpenError: If the circuit is open; the operation is not run
        """
        breaker = self._get_state(key)
        async with self._locks[key]:
            if breaker.state == CircuitState.OPEN:
                elapsed = self._clock() - (breaker.last_failure_at or 0.0)
                if elapsed < self.recovery_timeout:
                    raise BreakerOpenError(key, retry_in_seconds=self.recovery_timeout - elapsed)
                breaker.state = CircuitState.HALF_OPEN
                logger.info("circuit_half_open", target=key)

            try:
                result = await operation()
            except self.NEUTRAL_ERRORS:
                raise
            except Exception:
                self._record_failure(key, breaker)
                raise

            self._record_success(key, breaker)
            return result

    def _record_success(self, key: str, breaker: BreakerState) -> None:
        if breaker.state == CircuitState.HALF_OPEN:
            logger.info("circuit_closed", target=key)
        breaker.state = CircuitState.CLOSED
        breaker.consecutive_failures = 0

    def _record_failure(self, key: str, breaker: BreakerState) -> None:
        breaker.consecutive_failures += 1
        breaker.last_failure_at = self._clock()
        if breaker.state == CircuitState.HALF_OPEN or breaker.consecutive_failures >= self.failure_threshold:
            if breaker.state != CircuitState.OPEN:
                breaker.times_opened += 1
            breaker.state = CircuitState.OPEN
            logger.warning(
                "circuit_opened",
                target=key,
                consecutive_failures=breaker.consecutive_failures,
                recovery_timeout=self.recovery_timeout,
            )

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Breaker state of every target seen so far, for reporting."""
        return {
            key: {
                "state": breaker.state.value,
                "consecutive_failures": breaker.consecutive_failures,
                "times_opened": breaker.times_opened,
            }
            for key, breaker in self._states.items()
        }
