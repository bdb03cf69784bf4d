"""Webhook HTTP handlers — FastAPI routes for inbound Shopify webhooks.

Each request:
1. Reads the raw body (needed for HMAC verification)
2. Hands headers + body to the WebhookRouter
3. Returns the router's JSON answer as-is

The path form ``/api/webhooks/{topic}`` additionally requires the
X-Shopify-Topic header to match the path.
"""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from minimall.context import AppContext, get_context

logger = logging.getLogger(__name__)


async def _handle_webhook(
    request: Request, ctx: AppContext, expected_topic: str | None = None
) -> JSONResponse:
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    result = await ctx.webhook_router.handle(headers, body, expected_topic=expected_topic)
    return JSONResponse(result.body, status_code=result.status_code)


def register_webhook_routes(app: FastAPI) -> None:
    """Register webhook endpoint routes on the FastAPI app."""

    @app.post("/api/webhooks")
    async def shopify_webhook(request: Request, ctx: AppContext = Depends(get_context)):
        """Receive Shopify webhooks (signature-verified)."""
        return await _handle_webhook(request, ctx)

    @app.post("/api/webhooks/{topic:path}")
    async def shopify_webhook_with_topic(
        request: Request, topic: str, ctx: AppContext = Depends(get_context)
    ):
        """Receive Shopify webhooks on a per-topic path, e.g. /api/webhooks/app/uninstalled."""
        return await _handle_webhook(request, ctx, expected_topic=topic)

    logger.info("Webhook routes registered: /api/webhooks[/{topic}]")
