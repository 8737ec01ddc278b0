"""
Configuration management for the Litter Marketplace order core.

Loads settings from .env via pydantic-settings.

Notes:
    - validate_production_settings() enforces strict CORS, a JWT secret and a
      live Stripe key in production
    - Stripe calls go through the SDK's httpx client, bounded by
      stripe_timeout_seconds; the SDK retries connection failures
      stripe_max_network_retries times
    - Checkout sessions (and the puppy holds they create) expire after
      checkout_hold_minutes
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/litter_market.db"

    # ── Stripe (payment provider + catalog mirror) ──────────────────
    stripe_secret_key: str = ""
    stripe_api_base: str = "https://api.stripe.com"
    stripe_timeout_seconds: float = 10.0
    stripe_max_network_retries: int = 1
    currency: str = "usd"

    # Price retirement is retried on timeout before CatalogSyncFailed
    catalog_retry_attempts: int = 2
    catalog_retry_backoff_seconds: float = 0.5

    # ── Orders ──────────────────────────────────────────────────────
    scheduling_window_days: int = 15
    # Stripe accepts 30 minutes to 24 hours
    checkout_hold_minutes: int = 60
    archived_order_retention_days: int = 30

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    frontend_origin: str = "http://localhost:5173"

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "litter-market-api"
    jwt_access_ttl_minutes: int = 60

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # allow unknown .env keys without crashing
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to verify access tokens issued by the auth service."
                )
            if not self.stripe_secret_key:
                raise ValueError("STRIPE_SECRET_KEY must be set in production.")
            if self.stripe_secret_key.startswith("sk_test_"):
                raise ValueError(
                    "STRIPE_SECRET_KEY is a test key. "
                    "Use a live key in production."
                )
            logger.info("Production settings validated")
        else:
            warnings = []
            if not self.stripe_secret_key:
                warnings.append("STRIPE_SECRET_KEY not set (catalog and checkout calls will fail)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(w)


# Global settings instance
settings = Settings()
