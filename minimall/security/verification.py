"""Shopify HMAC verification: OAuth query strings and webhook bodies.

Security contract:
- All comparisons use hmac.compare_digest() (constant-time)
- Webhook bodies are verified over the exact raw bytes, never re-serialized JSON
- Missing secret -> ConfigurationError (operator problem, 500)
- Missing signature -> AuthenticationError MISSING_SIGNATURE
- Mismatch -> False; callers turn it into AuthenticationError INVALID_SIGNATURE
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Iterable, Mapping

from minimall.errors import AuthenticationError, ConfigurationError

# Query parameters excluded from the signed message
_UNSIGNED_PARAMS = {"hmac", "signature"}

QueryItems = Mapping[str, str] | Iterable[tuple[str, str]]


def _require_secret(secret: str | None) -> bytes:
    if not secret:
        raise ConfigurationError("HMAC secret not configured")
    return secret.encode("utf-8")


def _items(params: QueryItems) -> list[tuple[str, str]]:
    if isinstance(params, Mapping):
        return list(params.items())
    return list(params)


def build_query_message(params: QueryItems) -> str:
    """Sorted ``key=value`` pairs joined with ``&``, minus hmac/signature."""
    filtered = [(k, v) for k, v in _items(params) if k not in _UNSIGNED_PARAMS]
    filtered.sort(key=lambda item: item[0])
    return "&".join(f"{key}={value}" for key, value in filtered)


def compute_query_hmac(params: QueryItems, secret: str) -> str:
    """Hex HMAC-SHA256 of the canonical query message."""
    return hmac.new(
        _require_secret(secret),
        build_query_message(params).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_query_hmac(params: QueryItems, supplied: str | None, secret: str) -> bool:
    """Verify the ``hmac`` parameter of an OAuth callback.

    Args:
        params: All query parameters (mapping or (key, value) pairs)
        supplied: The ``hmac`` value from the request
        secret: Shopify API secret

    Returns:
        True if the supplied value matches
    """
    _require_secret(secret)
    if not supplied:
        raise AuthenticationError("Missing HMAC parameter", code="MISSING_SIGNATURE")
    computed = compute_query_hmac(params, secret)
    return hmac.compare_digest(
        computed.encode("utf-8"), supplied.strip().lower().encode("utf-8")
    )


def compute_body_hmac(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of a raw webhook body."""
    digest = hmac.new(_require_secret(secret), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_body_hmac(body: bytes, signature: str | None, secret: str) -> bool:
    """Verify an ``X-Shopify-Hmac-Sha256`` header against the raw body.

    A leading ``sha256=`` on the header value is tolerated.
    """
    computed = compute_body_hmac(body, secret)
    if not signature:
        raise AuthenticationError("Missing webhook signature", code="MISSING_SIGNATURE")
    cleaned = signature.strip()
    if cleaned.startswith("sha256="):
        cleaned = cleaned[len("sha256="):]
    return hmac.compare_digest(computed.encode("utf-8"), cleaned.encode("utf-8"))
