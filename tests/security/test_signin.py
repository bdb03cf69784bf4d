"""P0 CRITICAL: Dashboard sign-in over HTTP.

Verifies:
- Wrong password, unknown user -> 401 invalid_credentials, no cookie
- Correct password for another shop -> 403 shop_mismatch, no cookie
- Success sets a 7-day lax http-only cookie holding a signed token
- The password hash never appears in the response
- Sign-in attempts are rate limited per client IP
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from minimall.auth.routes import DASHBOARD_SESSION_COOKIE
from minimall.auth.users import DashboardUser, hash_password

PASSWORD = "correct horse battery"


@pytest.fixture
def user(context, shop):
    user = DashboardUser(
        id=7,
        email="owner@example.com",
        name="Shop Owner",
        shop_domain=shop,
        instagram="shopowner",
        password_hashes=(hash_password(PASSWORD, context.settings.signing_secret),),
    )
    context.users.add(user)
    return user


def _signin(client, identifier, password=PASSWORD, **extra):
    return client.post(
        "/api/auth/signin", json={"usernameOrEmail": identifier, "password": password, **extra}
    )


def _cookie_header(resp) -> str | None:
    for header in resp.headers.get_list("set-cookie"):
        if header.startswith(f"{DASHBOARD_SESSION_COOKIE}="):
            return header
    return None


class TestSignInRejections:
    def test_wrong_password(self, client, user):
        resp = _signin(client, user.email, password="wrong password")

        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_credentials"
        assert _cookie_header(resp) is None

    def test_unknown_user(self, client, user):
        resp = _signin(client, "nobody@example.com")

        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_credentials"

    def test_shop_mismatch(self, client, user):
        resp = _signin(client, user.email, shopDomain="other-shop.myshopify.com")

        assert resp.status_code == 403
        assert resp.json()["error"] == "shop_mismatch"
        assert _cookie_header(resp) is None

    def test_missing_fields(self, client):
        resp = client.post("/api/auth/signin", json={"usernameOrEmail": "a@b.c"})
        assert resp.status_code == 422

    def test_rate_limited(self, client, user):
        for _ in range(5):
            _signin(client, user.email, password="wrong password")

        resp = _signin(client, user.email)

        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) == 60


class TestSignInSuccess:
    def test_sets_lax_seven_day_cookie(self, client, user, context, shop, clock):
        resp = _signin(client, user.email, shopDomain=shop)

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "user": {
                "id": 7,
                "email": "owner@example.com",
                "name": "Shop Owner",
                "shopDomain": shop,
            },
        }

        header = _cookie_header(resp)
        assert header is not None
        assert "HttpOnly" in header
        assert "samesite=lax" in header.lower()
        assert f"Max-Age={7 * 24 * 60 * 60}" in header

        token = header.split(";", 1)[0].split("=", 1)[1]
        identity = context.codec.decode_identity(token)
        assert identity.user_id == 7
        assert identity.shop_domain == shop

        clock.advance(int(timedelta(days=7).total_seconds() * 1000))
        assert context.codec.decode_identity(token) is None

    def test_instagram_handle(self, client, user):
        assert _signin(client, "@shopowner").status_code == 200

    def test_no_secret_material_in_response(self, client, user):
        resp = _signin(client, user.email)
        assert user.password_hashes[0] not in resp.text
        assert PASSWORD not in resp.text

    def test_session_endpoint_reads_signin_cookie(self, client, user, shop):
        token = _cookie_header(_signin(client, user.email)).split(";", 1)[0].split("=", 1)[1]
        client.cookies.set(DASHBOARD_SESSION_COOKIE, token)

        resp = client.get("/api/auth/session")

        assert resp.status_code == 200
        data = resp.json()
        assert data["authenticated"] is True
        assert data["shop"] == shop
        assert data["user"]["email"] == "owner@example.com"

    def test_signin_token_is_not_a_shopify_session(self, client, user, context):
        token = _cookie_header(_signin(client, user.email)).split(";", 1)[0].split("=", 1)[1]
        assert context.codec.decode(token) is None
