"""Shared fixtures for the MiniMall auth test suite.

- settings: fully configured Settings (no .env lookup, no sweep task)
- clock: FakeClock shared by every collaborator built from make_context
- sign_webhook / sign_callback: factories producing valid Shopify signatures
"""

from __future__ import annotations

import base64
import hashlib
import hmac

import pytest

from minimall.clock import FakeClock
from minimall.config import Settings
from minimall.context import build_context
from minimall.observability import LoggingErrorReporter
from minimall.webhooks.store import InMemoryShopDataStore

API_KEY = "test-api-key"
API_SECRET = "test-api-secret"
WEBHOOK_SECRET = "test-webhook-secret"
APP_URL = "https://admin.minimall.test"


@pytest.fixture
def shop() -> str:
    return "demo-shop.myshopify.com"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        shopify_api_key=API_KEY,
        shopify_api_secret=API_SECRET,
        shopify_webhook_secret=WEBHOOK_SECRET,
        session_secret="",
        app_url=APP_URL,
        redis_url="",
        trusted_proxies="",
        rate_limit_sweep_seconds=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reporter() -> LoggingErrorReporter:
    return LoggingErrorReporter()


@pytest.fixture
def store() -> InMemoryShopDataStore:
    return InMemoryShopDataStore()


@pytest.fixture
def make_context(settings, clock, reporter, store):
    """Factory for an AppContext wired to the test collaborators."""

    def _make(**overrides):
        kwargs = {"clock": clock, "reporter": reporter, "store": store}
        kwargs.update(overrides)
        return build_context(kwargs.pop("settings", settings), **kwargs)

    return _make


@pytest.fixture
def sign_webhook():
    """Factory: raw body -> valid X-Shopify-Hmac-Sha256 value."""

    def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
        digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    return _sign


@pytest.fixture
def sign_callback():
    """Factory: query params -> the same params plus a valid ``hmac``."""

    def _sign(params: dict[str, str], secret: str = API_SECRET) -> dict[str, str]:
        message = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
        return {**params, "hmac": digest}

    return _sign


@pytest.fixture
def webhook_headers(sign_webhook, shop):
    """Factory for a complete, correctly signed webhook header set."""

    def _make(body: bytes, topic: str = "orders/create", **overrides: str) -> dict[str, str]:
        headers = {
            "x-shopify-hmac-sha256": sign_webhook(body),
            "x-shopify-shop-domain": shop,
            "x-shopify-topic": topic,
            "content-type": "application/json",
        }
        headers.update({k.replace("_", "-"): v for k, v in overrides.items()})
        return headers

    return _make
