"""Adaptive per-target rate limiter.

Each target keeps its own delay between requests. The delay shrinks
after an unbroken streak of fast successes and grows on timeouts and
blocks, but always stays inside the target's rate profile.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from harvester.models.outcome import ErrorKind, StrategyOutcome
from harvester.schemas.target import Target

logger = structlog.get_logger(__name__)


@dataclass
class RateLimiterState:
    """Pacing state for one target. Delays are in milliseconds."""

    current_delay_ms: float
    min_delay_ms: float
    max_delay_ms: float
    consecutive_successes: int = 0
    fast_successes: int = 0  # Unbroken run of successes under the fast threshold
    consecutive_failures: int = 0
    last_request_at: Optional[float] = None  # Monotonic seconds

    def clamp(self) -> None:
        self.current_delay_ms = min(self.max_delay_ms, max(self.min_delay_ms, self.current_delay_ms))


class AdaptiveRateLimiter:
    """Per-target adaptive delay driven by strategy outcomes.

    Strategies call wait() before every navigation; the orchestrator calls
    report() after every attempt.
    """

    FAST_STREAK = 5
    SPEEDUP_FACTOR = 0.9
    SLOW_RESPONSE_FACTOR = 1.2
    BLOCK_FACTOR_RANGE = (2.5, 3.0)
    TIMEOUT_FACTOR_RANGE = (1.2, 1.5)

    def __init__(
        self,
        fast_response_ms: float = 2000,
        slow_response_ms: float = 5000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the rate limiter.

        Args:
            fast_response_ms: Responses below this count toward the speed-up streak
            slow_response_ms: Successful responses above this still slow pacing down
            clock: Monotonic clock in seconds
            sleep: Coroutine used to wait
            rng: Random source for the slowdown factors
        """
        self.fast_response_ms = fast_response_ms
        self.slow_response_ms = slow_response_ms
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._states: Dict[str, RateLimiterState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_state(self, target: Target) -> RateLimiterState:
        """Get or create the pacing state for a target."""
        state = self._states.get(target.id)
        if state is None:
            profile = target.rate_profile
            state = RateLimiterState(
                current_delay_ms=float(profile.initial_delay_ms),
                min_delay_ms=float(profile.min_delay_ms),
                max_delay_ms=float(profile.max_delay_ms),
            )
            self._states[target.id] = state
            self._locks[target.id] = asyncio.Lock()
        return state

    async def wait(self, target: Target) -> float:
        """Suspend until the target's current delay has elapsed since its last request.

        The request slot is reserved under the target's lock, so concurrent
        callers for one target are spaced out rather than released together.

        Args:
            target: Target about to be requested

        Returns:
            Seconds actually waited
        """
        state = self._get_state(target)
        async with self._locks[target.id]:
            now = self._clock()
            delay = state.current_delay_ms / 1000.0
            if state.last_request_at is None:
                wait_for = 0.0
            else:
                wait_for = max(0.0, state.last_request_at + delay - now)
            state.last_request_at = now + wait_for

        if wait_for > 0:
            logger.debug("rate_limit_wait", target=target.id, seconds=round(wait_for, 3))
            await self._sleep(wait_for)
        return wait_for

    def report(self, target: Target, outcome: StrategyOutcome) -> float:
        """Adjust the target's delay from an attempt outcome.

        Args:
            target: Target the attempt ran against
            outcome: Outcome of that attempt

        Returns:
            The new current delay in milliseconds
        """
        state = self._get_state(target)
        previous = state.current_delay_ms

        if outcome.success:
            state.consecutive_failures = 0
            state.consecutive_successes += 1
            response_ms = outcome.response_ms if outcome.response_ms is not None else outcome.duration_ms
            if response_ms < self.fast_response_ms:
                state.fast_successes += 1
            else:
                state.fast_successes = 0
            if response_ms > self.slow_response_ms:
                state.current_delay_ms *= self.SLOW_RESPONSE_FACTOR
            elif state.fast_successes >= self.FAST_STREAK:
                state.current_delay_ms *= self.SPEEDUP_FACTOR
        else:
            state.consecutive_successes = 0
            state.fast_successes = 0
            state.consecutive_failures += 1
            if outcome.error_kind == ErrorKind.BLOCKED:
                state.current_delay_ms *= self._rng.uniform(*self.BLOCK_FACTOR_RANGE)
            elif outcome.error_kind in (ErrorKind.TIMEOUT, ErrorKind.NAVIGATION):
                state.current_delay_ms *= self._rng.uniform(*self.TIMEOUT_FACTOR_RANGE)

        state.clamp()
        if state.current_delay_ms != previous:
            logger.info(
                "rate_limit_adjusted",
                target=target.id,
                previous_ms=round(previous),
                current_ms=round(state.current_delay_ms),
                success=outcome.success,
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
            )
        return state.current_delay_ms

    def current_delay(self, target: Target) -> float:
        """Current delay for a target in milliseconds."""
        return self._get_state(target).current_delay_ms

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Pacing state of every target seen so far, for reporting."""
        return {
            target_id: {
                "current_delay_ms": round(state.current_delay_ms),
                "consecutive_successes": state.consecutive_successes,
                "fast_successes": state.fast_successes,
                "consecutive_failures": state.consecutive_failures,
            }
            for target_id, state in self._states.items()
        }
