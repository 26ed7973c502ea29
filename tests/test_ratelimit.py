"""Tests for rate limiting."""

import threading
import time

import pytest

from models import ConfigurationError
from ratelimit import RateLimiter, get_rate_limiter, reset_rate_limiter


class TestRateLimiter:
    """Tests for RateLimiter class."""

    def test_allows_single_request(self):
        limiter = RateLimiter(max_concurrent=10, requests_per_second=100)

        with limiter.acquire():
            pass

    def test_enforces_concurrent_limit(self):
        limiter = RateLimiter(max_concurrent=2, requests_per_second=0)
        active_count = 0
        max_active = 0
        lock = threading.Lock()

        def worker():
            nonlocal active_count, max_active
            with limiter.acquire():
                with lock:
                    active_count += 1
                    max_active = max(max_active, active_count)
                time.sleep(0.05)
                with lock:
                    active_count -= 1

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max_active <= 2

    def test_enforces_rate_limit(self):
        sleeps = []
        now = [0.0]

        def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        limiter = RateLimiter(
            requests_per_second=10, clock=lambda: now[0], sleep=sleep
        )
        for _ in range(3):
            with limiter.acquire():
                pass

        # First request uses the initial token, the next two wait 100ms each
        assert sleeps == pytest.approx([0.1, 0.1])

    def test_burst_allows_back_to_back_requests(self):
        sleeps = []
        limiter = RateLimiter(
            requests_per_second=10, burst=3, clock=lambda: 0.0, sleep=sleeps.append
        )
        for _ in range(3):
            with limiter.acquire():
                pass

        assert sleeps == []

    def test_zero_rate_disables_bucket(self):
        sleeps = []
        limiter = RateLimiter(requests_per_second=0, sleep=sleeps.append)
        for _ in range(5):
            with limiter.acquire():
                pass

        assert sleeps == []

    def test_rejects_invalid_settings(self):
        with pytest.raises(ConfigurationError):
            RateLimiter(max_concurrent=0)
        with pytest.raises(ConfigurationError):
            RateLimiter(burst=0)

    def test_repr(self):
        limiter = RateLimiter(max_concurrent=5, requests_per_second=50)
        repr_str = repr(limiter)

        assert "max_concurrent=5" in repr_str
        assert "requests_per_second=50" in repr_str


class TestGetRateLimiter:
    """Tests for the shared limiter."""

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("OPENSTACK_MAX_CONCURRENT_CALLS", "4")
        monkeypatch.setenv("OPENSTACK_REQUESTS_PER_SECOND", "7.5")
        reset_rate_limiter()

        limiter = get_rate_limiter()

        assert limiter.max_concurrent == 4
        assert limiter.requests_per_second == 7.5
        assert get_rate_limiter() is limiter

    def test_invalid_environment(self, monkeypatch):
        monkeypatch.setenv("OPENSTACK_MAX_CONCURRENT_CALLS", "many")
        reset_rate_limiter()

        with pytest.raises(ConfigurationError):
            get_rate_limiter()
