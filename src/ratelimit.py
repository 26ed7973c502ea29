"""Client-side throttling for OpenStack API calls.

Magnum polls run for every in-flight cluster operation, so a handful of
clusters converging at once can hammer the API. Calls share one limiter that
caps both concurrency and the sustained request rate.
"""

import logging
import os
import threading
import time
from collections.abc import Callable
from contextlib import contextmanager
from typing import Generator

from metrics import RATE_LIMIT_WAIT_SECONDS
from models import ConfigurationError
from utils import parse_float

logger = logging.getLogger(__name__)


class RateLimiter:
    """Thread-safe limiter combining a semaphore with a token bucket.

    The bucket holds at most `burst` tokens and refills at
    `requests_per_second`; a rate of zero disables the bucket.
    """

    def __init__(
        self,
        max_concurrent: int = 10,
        requests_per_second: float = 20.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ConfigurationError(
                f"max_concurrent must be at least 1, got {max_concurrent}"
            )
        if burst < 1:
            raise ConfigurationError(f"burst must be at least 1, got {burst}")

        self.max_concurrent = max_concurrent
        self.requests_per_second = requests_per_second
        self.burst = burst
        self._clock = clock
        self._sleep = sleep
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._bucket_lock = threading.Lock()
        self._tokens = float(burst)
        self._refilled_at = clock()

        logger.info("Rate limiter initialized: %r", self)

    def _take_token(self) -> None:
        if self.requests_per_second <= 0:
            return
        with self._bucket_lock:
            now = self._clock()
            self._tokens = min(
                float(self.burst),
                self._tokens + (now - self._refilled_at) * self.requests_per_second,
            )
            self._refilled_at = now
            if self._tokens < 1.0:
                # Sleep while holding the lock so waiters queue in order
                self._sleep((1.0 - self._tokens) / self.requests_per_second)
                self._tokens = 1.0
                self._refilled_at = self._clock()
            self._tokens -= 1.0

    @contextmanager
    def acquire(self) -> Generator[None, None, None]:
        """Hold one call slot for the duration of the block.

        Usage:
            with rate_limiter.acquire():
                conn.container_infrastructure_management.get_cluster(...)
        """
        started = self._clock()
        self._slots.acquire()
        try:
            self._take_token()
            waited = self._clock() - started
            if waited > 0.001:
                RATE_LIMIT_WAIT_SECONDS.observe(waited)
            yield
        finally:
            self._slots.release()

    def __repr__(self) -> str:
        return (
            f"RateLimiter(max_concurrent={self.max_concurrent}, "
            f"requests_per_second={self.requests_per_second:g}, burst={self.burst})"
        )


_rate_limiter: RateLimiter | None = None
_rate_limiter_lock = threading.Lock()


def rate_limiter_from_env() -> RateLimiter:
    """Build a limiter from the environment.

    Configuration via environment variables:
        OPENSTACK_MAX_CONCURRENT_CALLS: Max concurrent API calls (default: 10)
        OPENSTACK_REQUESTS_PER_SECOND: Sustained requests/second, 0 disables (default: 20)
        OPENSTACK_REQUEST_BURST: Requests allowed back to back (default: 1)
    """
    try:
        max_concurrent = int(os.environ.get("OPENSTACK_MAX_CONCURRENT_CALLS", "10"))
        burst = int(os.environ.get("OPENSTACK_REQUEST_BURST", "1"))
    except ValueError as e:
        raise ConfigurationError(f"invalid rate limit setting: {e}") from e
    requests_per_second = parse_float(
        os.environ.get("OPENSTACK_REQUESTS_PER_SECOND", "20"),
        "OPENSTACK_REQUESTS_PER_SECOND",
    )
    return RateLimiter(
        max_concurrent=max_concurrent,
        requests_per_second=requests_per_second,
        burst=burst,
    )


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter."""
    global _rate_limiter

    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = rate_limiter_from_env()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the shared limiter so the next call re-reads the environment."""
    global _rate_limiter

    with _rate_limiter_lock:
        _rate_limiter = None
