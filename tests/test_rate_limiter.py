"""
Tests for the per-user photo rate limiter in bot.py.

Covers:
  - Under the limit: photos are scanned
  - At the limit: first N accepted, (N+1)th rejected
  - Sliding window: old timestamps expire
  - Per-user isolation
"""
from __future__ import annotations

import time

import pytest

from bot import _is_rate_limited, _rate_buckets, RATE_MAX_REQUESTS, RATE_WINDOW_SECS


@pytest.fixture(autouse=True)
def clear_buckets():
    _rate_buckets.clear()
    yield
    _rate_buckets.clear()


@pytest.fixture
def clock(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(time, "monotonic", lambda: now[0])
    return now


class TestRateLimiter:
    def test_first_photo_allowed(self):
        assert _is_rate_limited(user_id=1) is False

    def test_quota_then_rejected(self):
        results = [_is_rate_limited(2) for _ in range(RATE_MAX_REQUESTS + 1)]
        assert results == [False] * RATE_MAX_REQUESTS + [True]

    def test_rejected_photos_do_not_consume_quota(self):
        for _ in range(RATE_MAX_REQUESTS * 3):
            _is_rate_limited(3)
        assert len(_rate_buckets[3]) == RATE_MAX_REQUESTS

    def test_users_independent(self):
        for _ in range(RATE_MAX_REQUESTS):
            _is_rate_limited(10)
        assert _is_rate_limited(10) is True
        assert _is_rate_limited(11) is False

    def test_window_slides(self, clock):
        for _ in range(RATE_MAX_REQUESTS):
            _is_rate_limited(20)
        assert _is_rate_limited(20) is True

        clock[0] += RATE_WINDOW_SECS / 2
        assert _is_rate_limited(20) is True

        clock[0] += RATE_WINDOW_SECS / 2 + 1
        assert _is_rate_limited(20) is False
