"""Shop domain validation.

Every value that names a shop and comes from an untrusted source (query
string, header, cookie) passes through is_valid_shop() before it is used to
build an outbound URL or a lookup key.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

_SHOP_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?\.myshopify\.com$")

SHOP_SUFFIX = ".myshopify.com"


def is_valid_shop(candidate: Any) -> bool:
    """Return True for ``<name>.myshopify.com`` with an alphanumeric start and end."""
    if not isinstance(candidate, str):
        return False
    return _SHOP_DOMAIN_RE.fullmatch(candidate) is not None


def extract_shop(query: Mapping[str, str], headers: Mapping[str, str]) -> str | None:
    """Find a valid shop domain for a request.

    Looks at the ``shop`` query parameter, then the Host subdomain, then the
    ``X-Shopify-Shop-Domain`` header. Header lookups expect lowercase keys
    (Starlette's Headers are case-insensitive anyway).
    """
    shop = query.get("shop")
    if shop and is_valid_shop(shop):
        return shop

    host = (headers.get("host") or "").split(":")[0]
    labels = host.split(".")
    # Only a real subdomain (shop.example.com) names a shop
    if len(labels) >= 3:
        candidate = labels[0] + SHOP_SUFFIX
        if is_valid_shop(candidate):
            return candidate

    header_shop = headers.get("x-shopify-shop-domain")
    if header_shop and is_valid_shop(header_shop):
        return header_shop

    return None
