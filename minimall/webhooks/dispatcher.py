"""Webhook router — validates a delivery and dispatches it by topic.

Per request:
    RECEIVED -> HEADERS_CHECKED -> SIGNATURE_VERIFIED -> RATE_LIMIT_CHECKED
    -> BODY_PARSED -> DISPATCHED -> {HANDLED | UNHANDLED_TOPIC}
with an early exit to REJECTED(reason) at any gate.

Contract:
- Unknown topics are acknowledged with 200 {"received": true} so Shopify does
  not keep retrying topics this deployment ignores
- Dispatched deliveries are logged to the store first and marked processed
  only after the handler returns; a failed delivery stays unprocessed
- Handler exceptions are reported with shop/topic tags and answered with 500;
  this layer never retries, redelivery is Shopify's job
- Responses are JSON only; the caller is a machine
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from minimall.observability import ErrorReporter
from minimall.security.ratelimit import TopicRateLimiter
from minimall.webhooks.idempotency import WebhookDeduplicator
from minimall.webhooks.store import ShopDataStore
from minimall.webhooks.topics import WebhookHandler
from minimall.webhooks.validation import WEBHOOK_ID_HEADER, validate_webhook

logger = logging.getLogger(__name__)


@dataclass
class WebhookResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


class WebhookRouter:
    """Topic-keyed dispatch of verified Shopify webhooks."""

    def __init__(
        self,
        secret: str | None,
        limiter: TopicRateLimiter,
        handlers: Mapping[str, WebhookHandler],
        reporter: ErrorReporter,
        deduplicator: WebhookDeduplicator | None = None,
        store: ShopDataStore | None = None,
    ) -> None:
        self._secret = secret
        self._limiter = limiter
        self._handlers = dict(handlers)
        self._reporter = reporter
        self._deduplicator = deduplicator
        self._store = store
        self._counts: dict[str, int] = {}

    @property
    def limiter(self) -> TopicRateLimiter:
        return self._limiter

    def topics(self) -> list[str]:
        return sorted(self._handlers)

    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def _audit(self, shop: str | None, topic: str | None, status: str) -> None:
        key = topic or "unknown"
        self._counts[key] = self._counts.get(key, 0) + 1
        logger.info(
            "WEBHOOK_AUDIT shop=%s topic=%s status=%s count=%d",
            shop or "unknown",
            key,
            status,
            self._counts[key],
        )

    async def handle(
        self,
        headers: Mapping[str, str],
        raw_body: bytes,
        expected_topic: str | None = None,
    ) -> WebhookResponse:
        """Process one delivery and build the JSON response."""
        start = time.monotonic()

        result = validate_webhook(headers, raw_body, self._secret, self._limiter, self._reporter)
        if not result.is_valid:
            error = result.error
            self._audit(result.shop, result.topic, f"rejected:{error.code}")
            return WebhookResponse(error.status_code, {"error": error.message})

        shop, topic = result.shop, result.topic

        if expected_topic is not None and expected_topic != topic:
            self._audit(shop, topic, "rejected:INVALID_TOPIC")
            return WebhookResponse(400, {"error": "Invalid webhook topic"})

        handler = self._handlers.get(topic)
        if handler is None:
            logger.warning("No handler for webhook topic: %s", topic)
            self._audit(shop, topic, "unhandled")
            return WebhookResponse(200, {"received": True})

        webhook_id = headers.get(WEBHOOK_ID_HEADER)
        if self._deduplicator is not None and self._deduplicator.is_duplicate(shop, webhook_id):
            self._audit(shop, topic, "duplicate")
            return WebhookResponse(200, {"received": True})

        delivery_id = None
        try:
            if self._store is not None:
                delivery_id = await self._store.record_webhook(
                    shop, topic, result.body, webhook_id
                )
            await handler(shop, result.body)
            if delivery_id is not None:
                await self._store.mark_webhook_processed(delivery_id)
        except Exception as e:
            if self._deduplicator is not None:
                self._deduplicator.release(shop, webhook_id)
            self._reporter.capture_exception(
                e,
                tags={"webhook_topic": topic, "shop_domain": shop},
                extra={"webhook_id": webhook_id},
            )
            self._audit(shop, topic, "handler_failed")
            return WebhookResponse(500, {"error": "Webhook processing failed"})

        self._audit(shop, topic, "handled")
        logger.debug(
            "Webhook processed in %.1fms: %s/%s", (time.monotonic() - start) * 1000, shop, topic
        )
        return WebhookResponse(200, {"success": True})
