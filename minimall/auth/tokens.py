"""Session token codec — HS256 JWS via python-jose.

Security contract:
- Two token kinds share the key: Shopify sessions (encode/decode) and
  dashboard sign-ins (encode_identity/decode_identity); neither decoder
  accepts the other kind
- decode() verifies the signature before any claim is read
- decode() returns None on every failure (bad signature, malformed token,
  expired, missing claims); it never raises
- Tokens are stateless: there is no server-side revocation list, a valid
  token stays valid until its ``exp``
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from minimall.auth.session import AssociatedUser, Session, format_scope, parse_scope
from minimall.auth.users import DashboardIdentity
from minimall.clock import Clock, SystemClock
from minimall.errors import ConfigurationError

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"
_DASHBOARD_KIND = "dashboard"


def _has_canonical_signature(token: str) -> bool:
    """Reject signature segments that only decode to the right bytes.

    base64 decoding ignores the spare low bits of the final character and
    skips characters outside the alphabet, so two different segments can
    carry the same MAC.  Only the canonical encoding is accepted.
    """
    segment = token.rpartition(".")[2].encode("ascii", errors="replace")
    try:
        return base64url_encode(base64url_decode(segment)) == segment
    except (ValueError, TypeError):
        return False


class SessionTokenCodec:
    """Encode sessions into signed tokens and back."""

    def __init__(self, secret: str, clock: Clock | None = None) -> None:
        if not secret:
            raise ConfigurationError("Session signing secret not configured")
        self._secret = secret
        self._clock = clock or SystemClock()

    def _sign(self, claims: dict[str, Any], expires_at: datetime | None) -> str:
        claims["iat"] = self._clock.now_ms() // 1000
        if expires_at is not None:
            # Rounded up so a session never expires before its expires_at
            claims["exp"] = math.ceil(expires_at.timestamp())
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def _verified_claims(self, token: str | None) -> dict[str, Any] | None:
        """Signature-checked, unexpired claims, or None."""
        if not token or not isinstance(token, str):
            return None
        if not _has_canonical_signature(token):
            return None
        try:
            # Expiry is checked below against the injected clock.
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as e:
            logger.debug("Session token rejected: %s", e)
            return None

        exp = claims.get("exp")
        if exp is not None:
            if not isinstance(exp, (int, float)):
                return None
            if self._clock.now_ms() >= int(exp * 1000):
                logger.debug("Session token expired")
                return None
        return claims

    @staticmethod
    def _expiry(claims: dict[str, Any]) -> datetime | None:
        exp = claims.get("exp")
        return None if exp is None else datetime.fromtimestamp(exp, tz=timezone.utc)

    def encode(self, session: Session) -> str:
        claims: dict[str, Any] = {
            "shop": session.shop,
            "access_token": session.access_token,
            "scope": format_scope(session.scope),
        }
        if session.associated_user is not None:
            claims["user"] = session.associated_user.to_dict()
        return self._sign(claims, session.expires_at)

    def decode(self, token: str | None) -> Session | None:
        claims = self._verified_claims(token)
        if claims is None:
            return None

        shop = claims.get("shop")
        access_token = claims.get("access_token")
        if not isinstance(shop, str) or not isinstance(access_token, str):
            return None
        if not shop or not access_token:
            return None

        user = None
        raw_user = claims.get("user")
        if isinstance(raw_user, dict):
            try:
                user = AssociatedUser.from_dict(raw_user)
            except (KeyError, TypeError, ValueError):
                return None

        return Session(
            shop=shop,
            access_token=access_token,
            scope=parse_scope(claims.get("scope")),
            expires_at=self._expiry(claims),
            associated_user=user,
        )

    def encode_identity(self, identity: DashboardIdentity) -> str:
        """Token for an interactive sign-in. Carries no Shopify access token."""
        claims: dict[str, Any] = {
            "kind": _DASHBOARD_KIND,
            "sub": str(identity.user_id),
            "email": identity.email,
            "name": identity.name,
            "shop": identity.shop_domain,
        }
        return self._sign(claims, identity.expires_at)

    def decode_identity(self, token: str | None) -> DashboardIdentity | None:
        claims = self._verified_claims(token)
        if claims is None or claims.get("kind") != _DASHBOARD_KIND:
            return None
        try:
            user_id = int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            return None
        email = claims.get("email")
        if not isinstance(email, str) or not email:
            return None
        return DashboardIdentity(
            user_id=user_id,
            email=email,
            shop_domain=str(claims.get("shop") or ""),
            name=str(claims.get("name") or ""),
            expires_at=self._expiry(claims),
        )
