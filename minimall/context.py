"""Process-wide collaborators, built once at startup.

create_app() attaches an AppContext to ``app.state.context``; route handlers
receive it through the ``get_context`` dependency. Tests build their own
context with a FakeClock, an httpx MockTransport or substitute handlers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import httpx
from fastapi import Request

from minimall.auth.oauth import ShopifyOAuth
from minimall.auth.tokens import SessionTokenCodec
from minimall.auth.users import InMemoryUserDirectory, UserDirectory
from minimall.clock import Clock, SystemClock
from minimall.config import Settings
from minimall.errors import ConfigurationError
from minimall.observability import ErrorReporter, LoggingErrorReporter
from minimall.security.ratelimit import RateLimiter, TopicRateLimiter
from minimall.webhooks.dispatcher import WebhookRouter
from minimall.webhooks.idempotency import WebhookDeduplicator
from minimall.webhooks.store import InMemoryShopDataStore, ShopDataStore
from minimall.webhooks.topics import WebhookHandler, build_default_handlers

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    clock: Clock
    reporter: ErrorReporter
    store: ShopDataStore
    auth_limiter: RateLimiter
    install_limiter: RateLimiter
    signin_limiter: RateLimiter
    webhook_router: WebhookRouter
    users: UserDirectory
    oauth: ShopifyOAuth | None = None
    codec: SessionTokenCodec | None = None

    def require_oauth(self) -> ShopifyOAuth:
        if self.oauth is None:
            self.settings.require_oauth()
            raise ConfigurationError("Shopify OAuth is not configured")
        return self.oauth

    def require_codec(self) -> SessionTokenCodec:
        if self.codec is None:
            raise ConfigurationError("Session signing secret not configured")
        return self.codec

    def sweep_rate_limits(self) -> int:
        return (
            self.auth_limiter.sweep()
            + self.install_limiter.sweep()
            + self.signin_limiter.sweep()
            + self.webhook_router.limiter.sweep()
        )


def build_context(
    settings: Settings,
    clock: Clock | None = None,
    reporter: ErrorReporter | None = None,
    store: ShopDataStore | None = None,
    handlers: Mapping[str, WebhookHandler] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    deduplicator: WebhookDeduplicator | None = None,
    users: UserDirectory | None = None,
) -> AppContext:
    """Wire every collaborator from settings.

    Missing OAuth credentials or signing secret leave ``oauth`` / ``codec``
    unset; the routes that need them answer with a configuration error
    instead of the process refusing to start.
    """
    clock = clock or SystemClock()
    reporter = reporter or LoggingErrorReporter()
    store = store if store is not None else InMemoryShopDataStore()

    oauth = None
    try:
        settings.require_oauth()
        oauth = ShopifyOAuth(
            api_key=settings.shopify_api_key,
            api_secret=settings.shopify_api_secret,
            scopes=settings.shopify_scopes,
            host_name=settings.app_url,
            timeout=settings.oauth_timeout_seconds,
            transport=transport,
            clock=clock,
        )
    except ConfigurationError as e:
        logger.warning("OAuth disabled: %s", e.message)

    codec = None
    if settings.signing_secret:
        codec = SessionTokenCodec(settings.signing_secret, clock=clock)
    else:
        logger.warning("Session tokens disabled: no signing secret configured")

    if deduplicator is None and settings.redis_url:
        deduplicator = WebhookDeduplicator.from_url(settings.redis_url)

    topic_limiter = TopicRateLimiter(
        limits=settings.webhook_rate_limits,
        default_limit=settings.webhook_default_rate_limit,
        window_ms=settings.webhook_rate_window_ms,
        clock=clock,
    )
    router = WebhookRouter(
        secret=settings.shopify_webhook_secret,
        limiter=topic_limiter,
        handlers=handlers if handlers is not None else build_default_handlers(store, reporter),
        reporter=reporter,
        deduplicator=deduplicator,
        store=store,
    )

    return AppContext(
        settings=settings,
        clock=clock,
        reporter=reporter,
        store=store,
        auth_limiter=RateLimiter(
            settings.auth_rate_limit_max,
            settings.auth_rate_limit_window_ms,
            clock=clock,
            name="auth",
        ),
        install_limiter=RateLimiter(
            settings.install_rate_limit_max,
            settings.install_rate_limit_window_ms,
            clock=clock,
            name="install",
        ),
        signin_limiter=RateLimiter(
            settings.auth_rate_limit_max,
            settings.auth_rate_limit_window_ms,
            clock=clock,
            name="signin",
        ),
        users=users if users is not None else InMemoryUserDirectory(),
        webhook_router=router,
        oauth=oauth,
        codec=codec,
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the app's context."""
    return request.app.state.context
