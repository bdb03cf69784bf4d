"""Shop data call contract used by webhook handlers.

The database itself is an external collaborator; handlers only depend on the
ShopDataStore protocol. InMemoryShopDataStore provides the correct interface
for tests and single-process deployments.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ShopDataStore(Protocol):
    async def record_webhook(
        self, shop: str, topic: str, payload: dict[str, Any], webhook_id: str | None = None
    ) -> str: ...

    async def mark_webhook_processed(self, delivery_id: str) -> None: ...

    async def mark_uninstalled(self, shop: str) -> None: ...

    async def save_attributions(self, shop: str, attributions: list[dict[str, Any]]) -> None: ...

    async def record_product_event(self, shop: str, topic: str, product_id: Any) -> None: ...

    async def record_customer_event(self, shop: str, topic: str, customer_id: Any) -> None: ...

    async def export_customer_data(self, shop: str, customer_id: Any) -> dict[str, Any]: ...

    async def redact_customer(self, shop: str, customer_id: Any) -> int: ...

    async def redact_shop(self, shop: str) -> None: ...


class InMemoryShopDataStore:
    """Dict-backed ShopDataStore."""

    def __init__(self) -> None:
        self.uninstalled: dict[str, float] = {}
        self.attributions: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.product_events: dict[str, list[tuple[str, Any]]] = defaultdict(list)
        self.customer_events: dict[str, list[tuple[str, Any]]] = defaultdict(list)
        self.redacted_shops: set[str] = set()
        self.webhooks: dict[str, dict[str, Any]] = {}

    async def record_webhook(
        self, shop: str, topic: str, payload: dict[str, Any], webhook_id: str | None = None
    ) -> str:
        delivery_id = uuid.uuid4().hex
        self.webhooks[delivery_id] = {
            "shop_domain": shop,
            "topic": topic,
            "webhook_id": webhook_id,
            "payload": payload,
            "processed": False,
            "created_at": time.time(),
            "processed_at": None,
        }
        return delivery_id

    async def mark_webhook_processed(self, delivery_id: str) -> None:
        entry = self.webhooks[delivery_id]
        entry["processed"] = True
        entry["processed_at"] = time.time()

    async def mark_uninstalled(self, shop: str) -> None:
        self.uninstalled[shop] = time.time()
        # Analytics and attributions are kept for audit until shop/redact.
        self.product_events.pop(shop, None)
        self.customer_events.pop(shop, None)

    async def save_attributions(self, shop: str, attributions: list[dict[str, Any]]) -> None:
        self.attributions[shop].extend(attributions)

    async def record_product_event(self, shop: str, topic: str, product_id: Any) -> None:
        self.product_events[shop].append((topic, product_id))

    async def record_customer_event(self, shop: str, topic: str, customer_id: Any) -> None:
        self.customer_events[shop].append((topic, customer_id))

    async def export_customer_data(self, shop: str, customer_id: Any) -> dict[str, Any]:
        events = [e for e in self.customer_events.get(shop, []) if e[1] == customer_id]
        return {"shop": shop, "customer_id": customer_id, "events": events}

    async def redact_customer(self, shop: str, customer_id: Any) -> int:
        before = self.customer_events.get(shop, [])
        kept = [e for e in before if e[1] != customer_id]
        self.customer_events[shop] = kept
        return len(before) - len(kept)

    async def redact_shop(self, shop: str) -> None:
        self.attributions.pop(shop, None)
        self.product_events.pop(shop, None)
        self.customer_events.pop(shop, None)
        self.redacted_shops.add(shop)
        logger.info("Shop data redacted: %s", shop)
