"""Security test fixtures.

Responsibilities:
- Creates the FastAPI `app` fixture around a test AppContext (FakeClock,
  in-memory store, httpx MockTransport standing in for Shopify)
- Wraps it in `client` (attacker perspective, redirects not followed)
- Provides `token_endpoint` to script the access-token response
- Provides `callback_query` / `session_cookie` helpers for the OAuth flow
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import pytest
from fastapi.testclient import TestClient

from minimall.app import create_app
from minimall.auth.session import Session


@dataclass
class TokenEndpoint:
    """Scripted stand-in for POST https://{shop}/admin/oauth/access_token."""

    status_code: int = 200
    payload: dict = field(
        default_factory=lambda: {
            "access_token": "shpat_test_token",
            "scope": "read_products,write_products",
        }
    )
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


@pytest.fixture
def context(make_context, token_endpoint):
    return make_context(transport=httpx.MockTransport(token_endpoint))


@pytest.fixture
def app(context):
    """Full route table, CORS and error handling; no background sweep."""
    return create_app(context=context)


@pytest.fixture
def client(app):
    """Unauthenticated TestClient (attacker perspective)."""
    with TestClient(app, raise_server_exceptions=False, follow_redirects=False) as c:
        yield c


@pytest.fixture
def callback_query(shop, sign_callback):
    """Factory for a correctly signed OAuth callback query string."""

    def _make(state: str, **overrides: str) -> dict[str, str]:
        params = {"code": "auth-code", "shop": shop, "state": state, "timestamp": "1700000000"}
        params.update(overrides)
        return sign_callback(params)

    return _make


@pytest.fixture
def session_cookie(context, shop):
    """Factory for a signed session token as the callback would set it."""

    def _make(**kwargs) -> str:
        kwargs.setdefault("shop", shop)
        kwargs.setdefault("access_token", "shpat_cookie_token")
        return context.codec.encode(Session(**kwargs))

    return _make
