"""Webhook idempotency — Redis-based deduplication.

Security contract:
- Tracks X-Shopify-Webhook-Id values in Redis with 24h TTL
- Duplicates are acknowledged with 200 (not an error, Shopify retries on errors)
- Key pattern: webhook:seen:{shop}:{webhook_id}
- If Redis is down, falls back to allowing (fail-open for availability)
- A failed delivery releases its key so the redelivery is processed
"""

from __future__ import annotations

import logging

import redis

logger = logging.getLogger(__name__)

_DEDUP_TTL_SECONDS = 86400  # 24 hours

_KEY_PREFIX = "webhook:seen"


class WebhookDeduplicator:
    """Atomic check-and-mark of webhook delivery ids."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = _DEDUP_TTL_SECONDS) -> None:
        self._redis = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str) -> WebhookDeduplicator:
        return cls(redis.from_url(redis_url, decode_responses=True))

    @staticmethod
    def _key(shop: str, webhook_id: str) -> str:
        return f"{_KEY_PREFIX}:{shop}:{webhook_id}"

    def is_duplicate(self, shop: str, webhook_id: str | None) -> bool:
        """Check-and-mark a delivery.

        Uses SET NX so two concurrent deliveries of the same id cannot both
        pass.

        Returns:
            True if this webhook id has already been seen for the shop
        """
        if not webhook_id:
            return False  # No ID = can't dedup, allow through

        try:
            was_set = self._redis.set(self._key(shop, webhook_id), "1", nx=True, ex=self._ttl)
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for webhook dedup, allowing %s/%s",
                shop,
                webhook_id,
                exc_info=True,
            )
            return False

        if not was_set:
            logger.info("Duplicate webhook acknowledged: %s/%s", shop, webhook_id)
            return True
        return False

    def release(self, shop: str, webhook_id: str | None) -> None:
        """Forget a delivery whose processing failed."""
        if not webhook_id:
            return
        try:
            self._redis.delete(self._key(shop, webhook_id))
        except redis.RedisError:
            logger.warning("Failed to release webhook id: %s/%s", shop, webhook_id)
