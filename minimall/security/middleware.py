"""Security middleware for FastAPI: CORS, client IP, error rendering.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight
2. Route handlers -- MinimallError escaping a JSON route is rendered as
   {"error": message} with the error's status code
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from minimall.config import Settings
from minimall.errors import ConfigurationError, MinimallError, RateLimitedError

logger = logging.getLogger(__name__)


def get_client_ip(request: Request, trusted_proxies: str = "") -> str:
    """Extract client IP, only trusting X-Forwarded-For behind a known proxy."""
    if trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    return get_remote_address(request) or "unknown"


async def _minimall_error_handler(request: Request, exc: MinimallError) -> JSONResponse:
    """Render a MinimallError as JSON without leaking internals."""
    if isinstance(exc, ConfigurationError):
        logger.error("Configuration error on %s: %s", request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)


def install_security_middleware(app: FastAPI, settings: Settings) -> None:
    """Install CORS and error handling on the FastAPI app.

    Call this AFTER all routes are registered but BEFORE the app starts.
    """
    app.add_exception_handler(MinimallError, _minimall_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
