"""Shopify OAuth and session HTTP routes.

Interactive failures redirect to the admin error page with a reason from
CALLBACK_ERRORS instead of returning JSON, so the merchant is never left on a
raw error body. Dashboard sign-in is called from a form and answers JSON.
Configuration errors are operator problems and surface as 500.
"""

from __future__ import annotations

import base64
import logging
import math
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from minimall.auth.oauth import (
    AUTHENTICATION_ERROR,
    AUTHENTICATION_FAILED,
    CALLBACK_ERRORS,
    SHOP_COOKIE,
    STATE_COOKIE,
    OAuthStep,
)
from minimall.auth.users import DashboardIdentity, check_password
from minimall.config import Settings
from minimall.context import AppContext, get_context
from minimall.errors import (
    AuthenticationError,
    RateLimitedError,
    UpstreamError,
    ValidationError,
)
from minimall.security.middleware import get_client_ip
from minimall.security.shop import extract_shop, is_valid_shop

logger = logging.getLogger(__name__)

SESSION_COOKIE = "shopify_session"
FALLBACK_SESSION_COOKIE = "shopify_session_fallback"
DASHBOARD_SESSION_COOKIE = "minimall_session"

ERROR_PAGE_PATH = "/admin/auth/error"

_OAUTH_COOKIE_MAX_AGE = 300  # 5 minutes

_INVALID_CREDENTIALS = {
    "error": "invalid_credentials",
    "message": "Invalid username/email or password",
}


class SignInRequest(BaseModel):
    username_or_email: str = Field(alias="usernameOrEmail", min_length=1)
    password: str = Field(min_length=1)
    shop_domain: str | None = Field(default=None, alias="shopDomain")


def error_redirect(settings: Settings, reason: str) -> RedirectResponse:
    """Redirect to the admin error page with a machine-readable reason."""
    if reason not in CALLBACK_ERRORS:
        reason = AUTHENTICATION_ERROR
    query = urlencode({"error": reason})
    return RedirectResponse(f"{settings.app_url.rstrip('/')}{ERROR_PAGE_PATH}?{query}")


def _success_url(settings: Settings, shop: str) -> str:
    host = base64.b64encode(f"{shop}/admin".encode("utf-8")).decode("ascii")
    return f"{settings.app_url.rstrip('/')}/?{urlencode({'shop': shop, 'host': host})}"


def _set_session_cookies(response: RedirectResponse, token: str, settings: Settings) -> None:
    max_age = settings.session_max_age_days * 24 * 60 * 60
    # Embedded admin iframe: cross-site, so SameSite=None (which requires Secure)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=True,
        samesite="none",
    )
    # Browsers that refuse SameSite=None fall back to this one
    response.set_cookie(
        FALLBACK_SESSION_COOKIE,
        token,
        max_age=max_age,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def register_auth_routes(app: FastAPI) -> None:
    """Register OAuth install/callback and session endpoints."""

    @app.get("/api/auth/shopify/install")
    async def shopify_install(request: Request, ctx: AppContext = Depends(get_context)):
        """Start the OAuth flow: set CSRF cookies and redirect to Shopify."""
        settings = ctx.settings
        client_ip = get_client_ip(request, settings.trusted_proxies)
        if not ctx.install_limiter.is_allowed(client_ip):
            wait = ctx.install_limiter.time_until_reset(client_ip).total_seconds()
            raise RateLimitedError("Too many install attempts", retry_after=math.ceil(wait))

        shop = request.query_params.get("shop")
        if not shop:
            raise ValidationError("Missing shop parameter")

        oauth = ctx.require_oauth()
        if not is_valid_shop(shop):
            raise ValidationError("Invalid shop domain")

        state = oauth.generate_state()
        response = RedirectResponse(oauth.build_authorization_url(shop, state))
        for name, value in ((STATE_COOKIE, state), (SHOP_COOKIE, shop)):
            response.set_cookie(
                name,
                value,
                max_age=_OAUTH_COOKIE_MAX_AGE,
                path="/",
                httponly=True,
                secure=settings.is_production,
                samesite="lax",
            )

        logger.info("OAuth %s for shop %s", OAuthStep.AWAITING_CALLBACK.value, shop)
        ctx.reporter.add_breadcrumb("shopify-auth", f"Starting OAuth flow for shop: {shop}")
        return response

    @app.get("/api/auth/shopify/callback")
    async def shopify_callback(request: Request, ctx: AppContext = Depends(get_context)):
        """Validate the callback, exchange the code and set the session cookie."""
        settings = ctx.settings
        client_ip = get_client_ip(request, settings.trusted_proxies)
        if not ctx.auth_limiter.is_allowed(client_ip):
            logger.warning(
                "OAuth callback rate limited for %s (reset in %s)",
                client_ip,
                ctx.auth_limiter.time_until_reset(client_ip),
            )
            return error_redirect(settings, AUTHENTICATION_ERROR)

        oauth = ctx.require_oauth()
        codec = ctx.require_codec()

        try:
            params = oauth.validate_callback(request.query_params.multi_items(), request.cookies)
        except (ValidationError, AuthenticationError) as e:
            logger.warning("OAuth callback rejected: %s (%s)", e.message, e.code)
            reason = e.code if e.code in CALLBACK_ERRORS else AUTHENTICATION_FAILED
            return error_redirect(settings, reason)

        try:
            session = await oauth.exchange_code_for_session(params.shop, params.code)
        except UpstreamError as e:
            ctx.reporter.capture_exception(
                e,
                tags={"flow": "oauth_callback", "shop": params.shop},
                extra={"detail": e.detail[:500]},
            )
            return error_redirect(settings, AUTHENTICATION_ERROR)
        logger.info("OAuth %s for shop %s", OAuthStep.TOKEN_EXCHANGED.value, params.shop)

        response = RedirectResponse(_success_url(settings, params.shop))
        _set_session_cookies(response, codec.encode(session), settings)
        response.delete_cookie(STATE_COOKIE, path="/")
        response.delete_cookie(SHOP_COOKIE, path="/")

        logger.info("OAuth %s for shop %s", OAuthStep.SESSION_ESTABLISHED.value, params.shop)
        ctx.reporter.add_breadcrumb("shopify-auth", f"OAuth successful for shop: {params.shop}")
        return response

    @app.post("/api/auth/signin")
    async def signin(
        body: SignInRequest, request: Request, ctx: AppContext = Depends(get_context)
    ):
        """Dashboard sign-in with username/email and password."""
        settings = ctx.settings
        client_ip = get_client_ip(request, settings.trusted_proxies)
        if not ctx.signin_limiter.is_allowed(client_ip):
            wait = ctx.signin_limiter.time_until_reset(client_ip).total_seconds()
            raise RateLimitedError("Too many sign-in attempts", retry_after=math.ceil(wait))

        codec = ctx.require_codec()
        user = await ctx.users.find_user(body.username_or_email)
        if not check_password(user, body.password, settings.signing_secret):
            logger.warning("Sign-in rejected for %s", client_ip)
            return JSONResponse(_INVALID_CREDENTIALS, status_code=401)

        if body.shop_domain and user.shop_domain != body.shop_domain:
            logger.warning("Sign-in shop mismatch for user %s", user.id)
            return JSONResponse(
                {"error": "shop_mismatch", "message": "User not associated with this shop"},
                status_code=403,
            )

        max_age = timedelta(days=settings.signin_max_age_days)
        now = datetime.fromtimestamp(ctx.clock.now_ms() / 1000, tz=timezone.utc)
        token = codec.encode_identity(
            DashboardIdentity(
                user_id=user.id,
                email=user.email,
                shop_domain=user.shop_domain,
                name=user.name,
                expires_at=now + max_age,
            )
        )

        response = JSONResponse({"success": True, "user": user.to_public_dict()})
        response.set_cookie(
            DASHBOARD_SESSION_COOKIE,
            token,
            max_age=int(max_age.total_seconds()),
            path="/",
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )
        logger.info("Dashboard sign-in for user %s (%s)", user.id, user.shop_domain)
        return response

    @app.get("/api/auth/session")
    async def get_session(request: Request, ctx: AppContext = Depends(get_context)):
        """Current session info. Never includes the access token."""
        token = request.cookies.get(SESSION_COOKIE) or request.cookies.get(
            FALLBACK_SESSION_COOKIE
        )
        dashboard_token = request.cookies.get(DASHBOARD_SESSION_COOKIE)
        if not token and not dashboard_token:
            shop = extract_shop(request.query_params, request.headers)
            if shop:
                return JSONResponse(
                    {"authenticated": False, "shop": shop, "requiresAuth": True},
                    status_code=401,
                )
            return JSONResponse({"authenticated": False}, status_code=401)

        codec = ctx.require_codec()
        session = codec.decode(token)
        if session is not None:
            return {"authenticated": True, **session.to_public_dict()}

        identity = codec.decode_identity(dashboard_token)
        if identity is not None:
            return {"authenticated": True, **identity.to_public_dict()}

        return JSONResponse({"authenticated": False}, status_code=401)

    @app.delete("/api/auth/session")
    async def delete_session():
        """Sign out: drop every session cookie."""
        response = JSONResponse({"success": True})
        for name in (SESSION_COOKIE, FALLBACK_SESSION_COOKIE, DASHBOARD_SESSION_COOKIE):
            response.delete_cookie(name, path="/")
        return response

    logger.info(
        "Auth routes registered: /api/auth/{shopify/install,shopify/callback,signin,session}"
    )
