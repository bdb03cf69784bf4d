"""P0 CRITICAL: OAuth install and callback over HTTP.

Verifies:
- Install sets short-lived CSRF cookies and redirects to Shopify
- Every callback failure redirects to the error page with a fixed reason
  and never sets a session cookie
- A valid callback exchanges the code and sets both session cookies
- Rate limits on install (429) and callback (error redirect)
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from minimall.app import create_app
from minimall.auth.oauth import SHOP_COOKIE, STATE_COOKIE
from minimall.auth.routes import FALLBACK_SESSION_COOKIE, SESSION_COOKIE

STATE = "0123456789abcdef0123456789abcdef"
ERROR_PAGE = "https://admin.minimall.test/admin/auth/error"


def _set_cookies(response) -> dict[str, str]:
    """Map cookie name -> raw Set-Cookie header."""
    return {h.split("=", 1)[0]: h for h in response.headers.get_list("set-cookie")}


def _error_reason(response) -> str:
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == ERROR_PAGE
    return parse_qs(location.query)["error"][0]


# ── Install ───────────────────────────────────────────────────────────────


class TestInstall:
    def test_redirects_to_shopify(self, client, shop):
        resp = client.get("/api/auth/shopify/install", params={"shop": shop})

        assert resp.is_redirect
        location = urlparse(resp.headers["location"])
        assert location.netloc == shop
        assert location.path == "/admin/oauth/authorize"

        state = parse_qs(location.query)["state"][0]
        cookies = _set_cookies(resp)
        assert cookies[STATE_COOKIE].startswith(f"{STATE_COOKIE}={state}")
        assert "Max-Age=300" in cookies[STATE_COOKIE]
        assert "HttpOnly" in cookies[STATE_COOKIE]
        assert cookies[SHOP_COOKIE].startswith(f"{SHOP_COOKIE}={shop}")

    def test_missing_shop(self, client):
        resp = client.get("/api/auth/shopify/install")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing shop parameter"}

    @pytest.mark.parametrize("shop", ["evil.com", "shop.myshopify.com.evil.com", "-x.myshopify.com"])
    def test_invalid_shop(self, client, shop):
        resp = client.get("/api/auth/shopify/install", params={"shop": shop})
        assert resp.status_code == 400
        assert SESSION_COOKIE not in _set_cookies(resp)

    def test_rate_limited_with_retry_after(self, client, shop):
        statuses = [
            client.get("/api/auth/shopify/install", params={"shop": shop}).status_code
            for _ in range(11)
        ]
        assert statuses[:10] == [307] * 10
        resp = client.get("/api/auth/shopify/install", params={"shop": shop})
        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) == 300

    def test_not_configured(self, make_context, settings, shop):
        bare = settings.model_copy(update={"shopify_api_key": ""})
        app = create_app(context=make_context(settings=bare))
        with TestClient(app, raise_server_exceptions=False, follow_redirects=False) as c:
            resp = c.get("/api/auth/shopify/install", params={"shop": shop})
        assert resp.status_code == 500
        assert "SHOPIFY_API_KEY" in resp.json()["error"]


# ── Callback ──────────────────────────────────────────────────────────────


class TestCallbackRejections:
    def _callback(self, client, params, state_cookie=STATE, shop_cookie=None):
        if state_cookie is not None:
            client.cookies.set(STATE_COOKIE, state_cookie)
        if shop_cookie is not None:
            client.cookies.set(SHOP_COOKIE, shop_cookie)
        return client.get("/api/auth/shopify/callback", params=params)

    def test_missing_state_cookie(self, client, callback_query, token_endpoint):
        resp = self._callback(client, callback_query(STATE), state_cookie=None)

        assert resp.is_redirect
        assert _error_reason(resp) == "authentication_failed"
        assert SESSION_COOKIE not in _set_cookies(resp)
        assert token_endpoint.requests == []

    def test_state_mismatch(self, client, callback_query, shop):
        resp = self._callback(client, callback_query("f" * 32), shop_cookie=shop)
        assert _error_reason(resp) == "authentication_failed"

    def test_shop_cookie_mismatch(self, client, callback_query):
        resp = self._callback(client, callback_query(STATE), shop_cookie="other.myshopify.com")
        assert _error_reason(resp) == "authentication_failed"

    def test_bad_hmac(self, client, callback_query, shop):
        params = {**callback_query(STATE), "hmac": "0" * 64}
        resp = self._callback(client, params, shop_cookie=shop)
        assert _error_reason(resp) == "authentication_failed"

    def test_no_shop(self, client):
        resp = self._callback(client, {"code": "c", "state": STATE, "hmac": "x"})
        assert _error_reason(resp) == "no_shop_provided"

    def test_invalid_shop(self, client, callback_query):
        resp = self._callback(client, callback_query(STATE, shop="evil.com"))
        assert _error_reason(resp) == "invalid_request"

    def test_token_exchange_failure(self, client, callback_query, shop, token_endpoint, reporter):
        token_endpoint.status_code = 400
        token_endpoint.payload = {"error": "invalid_grant"}

        resp = self._callback(client, callback_query(STATE), shop_cookie=shop)

        assert _error_reason(resp) == "authentication_error"
        assert SESSION_COOKIE not in _set_cookies(resp)
        [event] = [e for e in reporter.events if e.kind == "exception"]
        assert event.tags["flow"] == "oauth_callback"

    def test_rate_limited_redirects(self, client, callback_query):
        for _ in range(5):
            self._callback(client, callback_query(STATE), state_cookie=None)
        resp = self._callback(client, callback_query(STATE), state_cookie=None)
        assert _error_reason(resp) == "authentication_error"


class TestCallbackSuccess:
    def test_sets_session_and_redirects_to_app(
        self, client, callback_query, shop, token_endpoint, context
    ):
        client.cookies.set(STATE_COOKIE, STATE)
        client.cookies.set(SHOP_COOKIE, shop)

        resp = client.get("/api/auth/shopify/callback", params=callback_query(STATE))

        assert resp.is_redirect
        location = urlparse(resp.headers["location"])
        assert location.netloc == "admin.minimall.test"
        query = parse_qs(location.query)
        assert query["shop"] == [shop]
        assert "host" in query

        assert len(token_endpoint.requests) == 1
        assert token_endpoint.requests[0].url.host == shop

        cookies = _set_cookies(resp)
        main = cookies[SESSION_COOKIE]
        assert "HttpOnly" in main
        assert "Secure" in main
        assert "samesite=none" in main.lower()
        assert "samesite=lax" in cookies[FALLBACK_SESSION_COOKIE].lower()

        token = main.split(";", 1)[0].split("=", 1)[1]
        session = context.codec.decode(token)
        assert session.shop == shop
        assert session.access_token == "shpat_test_token"

        # OAuth cookies are cleared
        assert "Max-Age=0" in cookies[STATE_COOKIE]
        assert "Max-Age=0" in cookies[SHOP_COOKIE]

    def test_redirect_does_not_leak_token(self, client, callback_query, shop):
        client.cookies.set(STATE_COOKIE, STATE)
        client.cookies.set(SHOP_COOKIE, shop)
        resp = client.get("/api/auth/shopify/callback", params=callback_query(STATE))
        assert "shpat_test_token" not in resp.headers["location"]
