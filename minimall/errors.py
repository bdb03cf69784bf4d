"""Error taxonomy for the auth and webhook layer.

Every error carries a machine-readable ``code``, a human ``message`` and the
HTTP ``status_code`` it maps to.  Validation and authentication errors are
terminal for the request; upstream errors may be transient but are never
retried here (the user re-initiates OAuth, Shopify redelivers webhooks).
"""

from __future__ import annotations


class MinimallError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(MinimallError):
    """Malformed or missing client input."""

    status_code = 400
    default_code = "INVALID_REQUEST"


class AuthenticationError(MinimallError):
    """Signature, state or shop mismatch."""

    status_code = 401
    default_code = "AUTHENTICATION_FAILED"


class RateLimitedError(MinimallError):
    """Fixed-window admission control denied the request."""

    status_code = 429
    default_code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int = 60, code: str | None = None) -> None:
        super().__init__(message, code)
        self.retry_after = retry_after


class ConfigurationError(MinimallError):
    """A server-side secret or environment value is missing (operator-facing)."""

    status_code = 500
    default_code = "CONFIG_ERROR"


class UpstreamError(MinimallError):
    """The OAuth provider or a webhook handler failed."""

    status_code = 500
    default_code = "UPSTREAM_ERROR"

    def __init__(self, message: str, detail: str = "", code: str | None = None) -> None:
        super().__init__(message, code)
        self.detail = detail
