"""Shopify OAuth: authorization URL, callback validation, code exchange.

Flow:
    UNAUTHENTICATED -> (authorize URL issued) -> AWAITING_CALLBACK
    -> (state, shop and HMAC validated) -> TOKEN_EXCHANGED -> SESSION_ESTABLISHED

Any failure at the callback returns the merchant to UNAUTHENTICATED with one
of the CALLBACK_ERRORS reasons so the error page can say something useful.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Mapping
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from minimall.auth.session import AssociatedUser, Session, parse_scope
from minimall.clock import Clock, SystemClock
from minimall.errors import (
    AuthenticationError,
    ConfigurationError,
    UpstreamError,
    ValidationError,
)
from minimall.security.shop import is_valid_shop
from minimall.security.verification import verify_query_hmac

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/auth/shopify/callback"

STATE_COOKIE = "oauth_state"
SHOP_COOKIE = "oauth_shop"

# Reasons understood by the admin error page
AUTHENTICATION_FAILED = "authentication_failed"
NO_SHOP_PROVIDED = "no_shop_provided"
AUTHENTICATION_ERROR = "authentication_error"
INVALID_REQUEST = "invalid_request"

CALLBACK_ERRORS = (
    AUTHENTICATION_FAILED,
    NO_SHOP_PROVIDED,
    AUTHENTICATION_ERROR,
    INVALID_REQUEST,
)


class OAuthStep(str, Enum):
    """Merchant-side OAuth states."""

    UNAUTHENTICATED = "unauthenticated"
    AWAITING_CALLBACK = "awaiting_callback"
    TOKEN_EXCHANGED = "token_exchanged"
    SESSION_ESTABLISHED = "session_established"


class AccessTokenResponse(BaseModel):
    """Body of a successful ``/admin/oauth/access_token`` response."""

    access_token: str
    scope: str = ""
    expires_in: int | None = None
    associated_user_scope: str | None = None
    associated_user: dict[str, Any] | None = None


@dataclass(frozen=True)
class CallbackParams:
    """Validated OAuth callback input."""

    shop: str
    code: str
    state: str


class ShopifyOAuth:
    """OAuth client for one Shopify app installation."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        scopes: Iterable[str],
        host_name: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock | None = None,
    ) -> None:
        if not api_key or not api_secret or not host_name:
            raise ConfigurationError("Missing required Shopify auth environment variables")
        self.api_key = api_key
        self._api_secret = api_secret
        self.scopes = list(scopes)
        self.host_name = host_name.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._clock = clock or SystemClock()

    @property
    def redirect_uri(self) -> str:
        return f"{self.host_name}{CALLBACK_PATH}"

    @staticmethod
    def generate_state() -> str:
        """CSRF state token from a cryptographically secure source."""
        return secrets.token_hex(16)

    def build_authorization_url(self, shop: str, state: str | None = None) -> str:
        if not is_valid_shop(shop):
            raise ValidationError("Invalid shop domain", code=INVALID_REQUEST)
        params = urlencode(
            {
                "client_id": self.api_key,
                "scope": ",".join(self.scopes),
                "redirect_uri": self.redirect_uri,
                "state": state or self.generate_state(),
                "grant_options[]": "per-user",
            }
        )
        return f"https://{shop}/admin/oauth/authorize?{params}"

    def validate_callback(
        self,
        query: Iterable[tuple[str, str]],
        cookies: Mapping[str, str],
    ) -> CallbackParams:
        """Run every AWAITING_CALLBACK check, in order.

        Args:
            query: Callback query parameters as (key, value) pairs
            cookies: Request cookies (oauth_state, oauth_shop)

        Returns:
            CallbackParams for the token exchange

        Raises:
            ValidationError / AuthenticationError whose ``code`` is one of
            CALLBACK_ERRORS
        """
        items = list(query)
        params = dict(items)
        shop = params.get("shop")
        code = params.get("code")
        state = params.get("state")
        supplied_hmac = params.get("hmac")

        if not shop:
            raise ValidationError("No shop provided", code=NO_SHOP_PROVIDED)
        if not code or not state or not supplied_hmac:
            logger.warning(
                "Missing OAuth parameters: code=%s state=%s hmac=%s",
                bool(code),
                bool(state),
                bool(supplied_hmac),
            )
            raise ValidationError("Missing OAuth parameters", code=AUTHENTICATION_FAILED)
        if not is_valid_shop(shop):
            raise ValidationError("Invalid shop domain", code=INVALID_REQUEST)

        stored_state = cookies.get(STATE_COOKIE)
        if not stored_state or not secrets.compare_digest(
            stored_state.encode("utf-8"), state.encode("utf-8")
        ):
            raise AuthenticationError("Invalid state parameter", code=AUTHENTICATION_FAILED)

        stored_shop = cookies.get(SHOP_COOKIE)
        if not stored_shop or stored_shop != shop:
            raise AuthenticationError("Shop mismatch", code=AUTHENTICATION_FAILED)

        if not verify_query_hmac(items, supplied_hmac, self._api_secret):
            raise AuthenticationError("Invalid HMAC signature", code=AUTHENTICATION_FAILED)

        return CallbackParams(shop=shop, code=code, state=state)

    async def exchange_code_for_session(self, shop: str, code: str) -> Session:
        """Exchange an authorization code for an access token.

        Raises:
            UpstreamError: non-2xx status (detail = upstream body), timeout,
                transport failure or an unusable response body
        """
        if not is_valid_shop(shop):
            raise ValidationError("Invalid shop domain", code=INVALID_REQUEST)

        url = f"https://{shop}/admin/oauth/access_token"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    json={
                        "client_id": self.api_key,
                        "client_secret": self._api_secret,
                        "code": code,
                    },
                )
        except httpx.TimeoutException as e:
            raise UpstreamError(
                "Token exchange timed out", detail=str(e), code="UPSTREAM_TIMEOUT"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError("Token exchange request failed", detail=str(e)) from e

        if response.is_error:
            raise UpstreamError(
                f"Failed to exchange code for token (HTTP {response.status_code})",
                detail=response.text,
            )

        try:
            data = AccessTokenResponse.model_validate(response.json())
        except ValueError as e:
            raise UpstreamError("Malformed token response", detail=str(e)) from e

        return self._session_from_response(shop, data)

    def _session_from_response(self, shop: str, data: AccessTokenResponse) -> Session:
        expires_at = None
        if data.expires_in:
            now = datetime.fromtimestamp(self._clock.now_ms() / 1000, tz=timezone.utc)
            expires_at = now + timedelta(seconds=data.expires_in)

        user = None
        if data.associated_user:
            try:
                user = AssociatedUser.from_dict(data.associated_user)
            except (KeyError, TypeError, ValueError):
                logger.warning("Ignoring malformed associated_user for %s", shop)

        return Session(
            shop=shop,
            access_token=data.access_token,
            scope=parse_scope(data.scope),
            expires_at=expires_at,
            associated_user=user,
        )
