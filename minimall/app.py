"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from minimall.auth.routes import register_auth_routes
from minimall.config import Settings
from minimall.context import AppContext, build_context
from minimall.security.middleware import install_security_middleware
from minimall.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)


async def _sweep_forever(ctx: AppContext, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        removed = ctx.sweep_rate_limits()
        if removed:
            logger.debug("Rate limit sweep removed %d entries", removed)


def create_app(settings: Settings | None = None, context: AppContext | None = None) -> FastAPI:
    """Build the app around one AppContext.

    Args:
        settings: Loaded from the environment when omitted
        context: Pre-built collaborators (tests); built from settings otherwise
    """
    if context is None:
        context = build_context(settings or Settings())
    settings = context.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if settings.rate_limit_sweep_seconds > 0:
            task = asyncio.create_task(_sweep_forever(context, settings.rate_limit_sweep_seconds))
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="MiniMall Auth", lifespan=lifespan)
    app.state.context = context

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    register_auth_routes(app)
    register_webhook_routes(app)
    install_security_middleware(app, settings)
    return app
