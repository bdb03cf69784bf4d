"""Inbound Shopify webhook validation.

Gates, in order (first failure wins):
1. Required headers present            -> 401 MISSING_HEADERS
2. Webhook secret configured           -> 500 CONFIG_ERROR
3. Raw-body HMAC matches               -> 401 INVALID_SIGNATURE (+ monitoring signal)
4. Shop header is a *.myshopify.com    -> 400 INVALID_SHOP_DOMAIN
5. Per-(shop, topic) rate limit        -> 429 RATE_LIMITED
6. Body is a JSON object               -> 400 INVALID_JSON
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from minimall.errors import AuthenticationError, ConfigurationError
from minimall.observability import ErrorReporter
from minimall.security.ratelimit import TopicRateLimiter
from minimall.security.shop import is_valid_shop
from minimall.security.verification import verify_body_hmac

logger = logging.getLogger(__name__)

HMAC_HEADER = "x-shopify-hmac-sha256"
SHOP_HEADER = "x-shopify-shop-domain"
TOPIC_HEADER = "x-shopify-topic"
WEBHOOK_ID_HEADER = "x-shopify-webhook-id"


@dataclass(frozen=True)
class WebhookError:
    code: str
    message: str
    status_code: int


@dataclass
class WebhookValidationResult:
    """Per-request outcome of the validation gates. Never persisted."""

    is_valid: bool
    shop: str | None = None
    topic: str | None = None
    body: Any = None
    error: WebhookError | None = None

    @classmethod
    def reject(cls, code: str, message: str, status_code: int, **kwargs: Any) -> WebhookValidationResult:
        return cls(is_valid=False, error=WebhookError(code, message, status_code), **kwargs)


def validate_webhook(
    headers: Mapping[str, str],
    raw_body: bytes,
    secret: str | None,
    limiter: TopicRateLimiter,
    reporter: ErrorReporter,
) -> WebhookValidationResult:
    """Run every gate against one inbound delivery.

    Args:
        headers: Request headers (lowercase keys or case-insensitive mapping)
        raw_body: Exact request body bytes
        secret: Webhook signing secret (empty/None -> CONFIG_ERROR)
        limiter: Per-(shop, topic) limiter
        reporter: Receives the invalid-signature signal

    Returns:
        WebhookValidationResult with shop, topic and parsed body on success
    """
    signature = headers.get(HMAC_HEADER)
    shop = headers.get(SHOP_HEADER)
    topic = headers.get(TOPIC_HEADER)

    if not signature or not shop or not topic:
        return WebhookValidationResult.reject(
            "MISSING_HEADERS", "Missing required webhook headers", 401
        )

    try:
        valid = verify_body_hmac(raw_body, signature, secret or "")
    except ConfigurationError:
        logger.error("SHOPIFY_WEBHOOK_SECRET not configured")
        return WebhookValidationResult.reject(
            "CONFIG_ERROR", "Webhook secret not configured", 500, shop=shop, topic=topic
        )
    except AuthenticationError as e:
        return WebhookValidationResult.reject(e.code, e.message, 401, shop=shop, topic=topic)

    if not valid:
        reporter.capture_message(
            "Invalid webhook signature",
            level="warning",
            tags={"signal": "invalid_signature", "shop": shop, "topic": topic},
        )
        return WebhookValidationResult.reject(
            "INVALID_SIGNATURE", "Invalid webhook signature", 401, shop=shop, topic=topic
        )

    if not is_valid_shop(shop):
        return WebhookValidationResult.reject(
            "INVALID_SHOP_DOMAIN", "Invalid shop domain", 400, shop=shop, topic=topic
        )

    if not limiter.is_allowed(shop, topic):
        reporter.capture_message(
            "Webhook rate limit exceeded",
            level="warning",
            tags={"signal": "rate_limited", "shop": shop, "topic": topic},
        )
        return WebhookValidationResult.reject(
            "RATE_LIMITED", "Too many requests", 429, shop=shop, topic=topic
        )

    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return WebhookValidationResult.reject(
            "INVALID_JSON", "Invalid JSON body", 400, shop=shop, topic=topic
        )
    if not isinstance(body, dict):
        return WebhookValidationResult.reject(
            "INVALID_JSON", "Webhook body must be a JSON object", 400, shop=shop, topic=topic
        )

    return WebhookValidationResult(is_valid=True, shop=shop, topic=topic, body=body)
