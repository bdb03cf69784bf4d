"""Shopify webhook topic handlers.

Each handler is ``async (shop, payload) -> None``. Handlers raise on failure;
the dispatcher reports the exception and answers 500 so Shopify redelivers.
Deliveries are at-least-once, so every handler must tolerate replays.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from minimall.observability import ErrorReporter
from minimall.webhooks.store import ShopDataStore

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[str, Any], Awaitable[None]]

# Property / note attribute prefix written by the storefront cart
_ATTRIBUTION_MARKER = "minimall"


def _as_dict(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError(f"Expected JSON object payload, got {type(payload).__name__}")
    return payload


def _to_cents(value: Any) -> int:
    return round(float(value) * 100)


def _attribution_key(name: str) -> str:
    return name.replace(f"{_ATTRIBUTION_MARKER}_", "", 1).replace("_", "")


def extract_attribution(order: dict[str, Any], line_item: dict[str, Any]) -> dict[str, str] | None:
    """Collect MiniMall attribution fields for one line item.

    Line item ``properties`` are read first, then order ``note_attributes``;
    later values win. Names containing ``minimall`` map to keys with the
    ``minimall_`` prefix and underscores removed (``minimall_config_id`` ->
    ``configid``).
    """
    attribution: dict[str, str] = {}
    sources = (line_item.get("properties") or [], order.get("note_attributes") or [])
    for source in sources:
        for prop in source:
            name = str(prop.get("name", ""))
            if _ATTRIBUTION_MARKER in name.lower():
                attribution[_attribution_key(name)] = prop.get("value")
    return attribution or None


def build_order_attributions(shop: str, order: dict[str, Any]) -> list[dict[str, Any]]:
    """Revenue attribution rows for every attributed line item of an order."""
    rows = []
    for line_item in order.get("line_items") or []:
        attribution = extract_attribution(order, line_item)
        if attribution is None:
            continue
        quantity = int(line_item.get("quantity", 1))
        price = line_item.get("price", "0")
        rows.append(
            {
                "shop_domain": shop,
                "order_id": str(order.get("id")),
                "line_item_id": str(line_item.get("id")),
                "product_id": str(line_item.get("product_id")),
                "variant_id": str(line_item.get("variant_id")),
                "quantity": quantity,
                "price": _to_cents(price),
                "revenue": round(float(price) * quantity * 100),
                "currency": order.get("currency"),
                "created_at": order.get("created_at"),
                **attribution,
            }
        )
    return rows


def build_default_handlers(
    store: ShopDataStore,
    reporter: ErrorReporter,
) -> dict[str, WebhookHandler]:
    """Static topic -> handler table bound to its collaborators."""

    async def handle_app_uninstalled(shop: str, payload: Any) -> None:
        logger.info("Processing app uninstall for shop: %s", shop)
        await store.mark_uninstalled(shop)
        reporter.add_breadcrumb("webhook", f"App uninstalled: {shop}")

    async def handle_order_create(shop: str, payload: Any) -> None:
        order = _as_dict(payload)
        attributions = build_order_attributions(shop, order)
        if attributions:
            await store.save_attributions(shop, attributions)
            logger.info(
                "Saved %d revenue attributions for order #%s",
                len(attributions),
                order.get("order_number"),
            )
        reporter.add_breadcrumb(
            "webhook",
            f"Order processed: {order.get('name', order.get('id'))}",
            {
                "orderId": str(order.get("id")),
                "shop": shop,
                "total": order.get("total_price"),
                "items": len(order.get("line_items") or []),
                "attributions": len(attributions),
            },
        )

    def product_handler(topic: str) -> WebhookHandler:
        async def handle(shop: str, payload: Any) -> None:
            product = _as_dict(payload)
            await store.record_product_event(shop, topic, product.get("id"))
            logger.info("Product %s for shop %s: %s", topic, shop, product.get("id"))
            reporter.add_breadcrumb(
                "webhook", f"{topic}: {product.get('title', product.get('id'))}", {"shop": shop}
            )

        return handle

    def customer_handler(topic: str) -> WebhookHandler:
        async def handle(shop: str, payload: Any) -> None:
            customer = _as_dict(payload)
            await store.record_customer_event(shop, topic, customer.get("id"))
            # Customer email is PII; only the id is logged.
            logger.info("Customer %s for shop %s: id=%s", topic, shop, customer.get("id"))
            reporter.add_breadcrumb(
                "webhook", topic, {"customerId": customer.get("id"), "shop": shop}
            )

        return handle

    async def handle_customers_data_request(shop: str, payload: Any) -> None:
        request = _as_dict(payload)
        customer_id = (request.get("customer") or {}).get("id")
        export = await store.export_customer_data(shop, customer_id)
        logger.info(
            "Customer data request for shop %s, customer %s: %d events",
            shop,
            customer_id,
            len(export.get("events", [])),
        )
        reporter.add_breadcrumb("gdpr", f"Customer data request processed for shop: {shop}")

    async def handle_customers_redact(shop: str, payload: Any) -> None:
        request = _as_dict(payload)
        customer_id = (request.get("customer") or {}).get("id")
        if customer_id is None:
            return
        removed = await store.redact_customer(shop, customer_id)
        logger.info(
            "Customer redaction for shop %s, customer %s: %d records", shop, customer_id, removed
        )
        reporter.add_breadcrumb("gdpr", f"Customer data redacted for shop: {shop}")

    async def handle_shop_redact(shop: str, payload: Any) -> None:
        await store.redact_shop(shop)
        reporter.add_breadcrumb("gdpr", f"Shop data redacted for shop: {shop}")

    return {
        "app/uninstalled": handle_app_uninstalled,
        "orders/create": handle_order_create,
        "products/create": product_handler("products/create"),
        "products/update": product_handler("products/update"),
        "products/delete": product_handler("products/delete"),
        "customers/create": customer_handler("customers/create"),
        "customers/update": customer_handler("customers/update"),
        "customers/data_request": handle_customers_data_request,
        "customers/redact": handle_customers_redact,
        "shop/redact": handle_shop_redact,
    }
