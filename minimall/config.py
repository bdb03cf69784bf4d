"""MiniMall auth service configuration."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from minimall.errors import ConfigurationError

DEFAULT_SCOPES = [
    "read_products",
    "write_products",
    "read_themes",
    "write_themes",
    "read_customers",
    "read_orders",
]

# Expected legitimate traffic per (shop, topic) per window. Non-normative.
DEFAULT_WEBHOOK_RATE_LIMITS = {
    "app/uninstalled": 5,
    "orders/create": 50,
    "orders/updated": 50,
    "products/create": 20,
    "products/update": 20,
    "products/delete": 20,
}


class Settings(BaseSettings):
    """Environment-driven settings for the auth and webhook service."""

    environment: str = "development"
    app_url: str = ""

    # Shopify app credentials
    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_webhook_secret: str = ""
    shopify_scopes: list[str] = DEFAULT_SCOPES

    # Session token signing; falls back to the API secret when unset
    session_secret: str = ""
    session_max_age_days: int = 30
    signin_max_age_days: int = 7

    # Fixed-window rate limits
    auth_rate_limit_max: int = 5
    auth_rate_limit_window_ms: int = 60_000
    install_rate_limit_max: int = 10
    install_rate_limit_window_ms: int = 300_000
    webhook_rate_window_ms: int = 60_000
    webhook_rate_limits: dict[str, int] = DEFAULT_WEBHOOK_RATE_LIMITS
    webhook_default_rate_limit: int = 30
    rate_limit_sweep_seconds: float = 60.0

    oauth_timeout_seconds: float = 10.0

    # Webhook de-duplication is enabled only when set
    redis_url: str = ""

    trusted_proxies: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def signing_secret(self) -> str:
        return self.session_secret or self.shopify_api_secret

    def require_oauth(self) -> None:
        """Raise ConfigurationError unless every OAuth value is present."""
        missing = [
            name
            for name, value in (
                ("SHOPIFY_API_KEY", self.shopify_api_key),
                ("SHOPIFY_API_SECRET", self.shopify_api_secret),
                ("APP_URL", self.app_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                "Missing required Shopify auth environment variables: " + ", ".join(missing)
            )
