"""Tests for the in-memory and Redis-backed sliding window rate limiters."""

from __future__ import annotations

import fakeredis
import pytest

from tenant_auth.security.rate_limiter import SlidingWindowRateLimiter
from tenant_auth.security.redis_rate_limiter import RedisSlidingWindowRateLimiter


class FakeTime:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


@pytest.fixture()
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


@pytest.fixture(params=["memory", "redis"])
def limiter_factory(request, redis_client, fake_time):
    def build(max_requests: int, window_seconds: int):
        if request.param == "memory":
            return SlidingWindowRateLimiter(max_requests, window_seconds, time_fn=fake_time)
        return RedisSlidingWindowRateLimiter(
            redis_client,
            max_requests=max_requests,
            window_seconds=window_seconds,
            key_prefix="test",
            time_fn=fake_time,
        )

    return build


def test_rate_limiter_allows_within_threshold(limiter_factory):
    limiter = limiter_factory(3, 1)
    key = "login:user@example.com"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert limiter.retry_after(key) == 1


def test_rate_limiter_blocks_excess(limiter_factory):
    limiter = limiter_factory(2, 60)
    key = "login:user@example.com"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)
    assert limiter.allow("login:other@example.com")


def test_rate_limiter_expires_entries(limiter_factory, fake_time):
    limiter = limiter_factory(1, 60)
    key = "token-refresh:abc"
    assert limiter.allow(key)
    assert not limiter.allow(key)

    fake_time.value += 45
    assert limiter.retry_after(key) == 15
    fake_time.value += 15
    assert limiter.retry_after(key) == 0
    assert limiter.allow(key)


def test_reset_clears_the_window(limiter_factory):
    limiter = limiter_factory(1, 60)
    key = "login:user@example.com"
    assert limiter.allow(key)
    assert not limiter.allow(key)
    limiter.reset(key)
    assert limiter.retry_after(key) == 0
    assert limiter.allow(key)
