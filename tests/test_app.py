"""Tests for the application lifespan.

Tests:
- The background sweep drops stale rate limit entries while the app runs
- No sweep task when the interval is 0
"""

from __future__ import annotations

import time

from fastapi.testclient import TestClient

from minimall.app import create_app
from minimall.security.ratelimit import InMemoryRateLimitStore, RateLimiter


def _context_with_store(make_context, settings, clock, interval):
    ctx = make_context(settings=settings.model_copy(update={"rate_limit_sweep_seconds": interval}))
    store = InMemoryRateLimitStore()
    ctx.auth_limiter = RateLimiter(5, 60_000, store=store, clock=clock, name="auth")
    return ctx, store


def _wait_until(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


class TestRateLimitSweep:
    def test_stale_entries_swept_while_running(self, make_context, settings, clock):
        ctx, store = _context_with_store(make_context, settings, clock, 0.01)
        ctx.auth_limiter.is_allowed("1.2.3.4")
        clock.advance(120_001)
        ctx.auth_limiter.is_allowed("5.6.7.8")

        with TestClient(create_app(context=ctx)):
            assert _wait_until(lambda: len(store) == 1)

        assert store.get("1.2.3.4") is None
        assert store.get("5.6.7.8") is not None

    def test_disabled_sweep_leaves_entries(self, make_context, settings, clock):
        ctx, store = _context_with_store(make_context, settings, clock, 0)
        ctx.auth_limiter.is_allowed("1.2.3.4")
        clock.advance(120_001)

        with TestClient(create_app(context=ctx)) as client:
            time.sleep(0.05)
            assert client.get("/api/health").status_code == 200

        assert len(store) == 1
