"""Retry utilities: tenacity decorators and attempt backoff."""

import logging
import random
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

# tenacity logs through the stdlib logger, which structlog renders
retry_logger = logging.getLogger(__name__)


# Reusable retry decorator for HTTP requests (httpx)
http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type(
        (
            httpx.HTTPStatusError,
            httpx.ConnectError,
            httpx.TimeoutException,
        )
    ),
    before_sleep=before_sleep_log(retry_logger, logging.WARNING),
    reraise=True,
)


# Disk writes get exactly one retry before the caller sees the error
persistence_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_fixed(0.2),
    retry=retry_if_exception_type(OSError),
    before_sleep=before_sleep_log(retry_logger, logging.WARNING),
    reraise=True,
)


class BackoffPolicy:
    """Jittered exponential backoff between attempts on one target.

    The delay is base * 2^attempt, capped at max_seconds, then scaled by a
    random factor in [1 - jitter, 1 + jitter].
    """

    def __init__(
        self,
        base_seconds: float = 1.0,
        max_seconds: float = 30.0,
        jitter: float = 0.3,
        rng: Optional[random.Random] = None,
    ) -> None:
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        self._base = base_seconds
        self._max = max_seconds
        self._jitter = jitter
        self._rng = rng or random.Random()

    def get_sleep(self, attempt: int) -> float:
        """Backoff in seconds after the given zero-based attempt."""
        exp = min(self._max, self._base * (2 ** max(attempt, 0)))
        return exp * self._rng.uniform(1 - self._jitter, 1 + self._jitter)
