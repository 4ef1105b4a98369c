"""
Runtime configuration loaded from environment variables.

Provides:
- BillingSettings: immutable settings snapshot
- get_settings: cached accessor used by FastAPI dependencies

Call get_settings.cache_clear() after changing the environment (tests).
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

DEFAULT_REVENUECAT_API_BASE_URL = "https://api.revenuecat.com"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class BillingSettings:
    """Settings for the billing core."""

    database_url: str = "sqlite:///./tryon_billing.db"

    # Billing platform (RevenueCat REST API)
    revenuecat_api_key: Optional[str] = None
    revenuecat_api_base_url: str = DEFAULT_REVENUECAT_API_BASE_URL
    revenuecat_timeout_seconds: float = 10.0
    # Shared secret the billing platform sends as "Authorization: Bearer <secret>"
    revenuecat_webhook_secret: Optional[str] = None

    # Auth provider JWT verification
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = "authenticated"

    daily_generation_limit: int = 20

    @property
    def billing_lookup_enabled(self) -> bool:
        return bool(self.revenuecat_api_key)

    @classmethod
    def from_env(cls) -> "BillingSettings":
        audience = os.getenv("JWT_AUDIENCE", "authenticated")
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            revenuecat_api_key=os.getenv("REVENUECAT_API_KEY") or None,
            revenuecat_api_base_url=os.getenv(
                "REVENUECAT_API_BASE_URL", DEFAULT_REVENUECAT_API_BASE_URL
            ).rstrip("/"),
            revenuecat_timeout_seconds=_env_float("REVENUECAT_TIMEOUT_SECONDS", 10.0),
            revenuecat_webhook_secret=os.getenv("REVENUECAT_WEBHOOK_SECRET") or None,
            jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            jwt_audience=audience or None,
            daily_generation_limit=_env_int("DAILY_GENERATION_LIMIT", 20),
        )


@lru_cache(maxsize=1)
def get_settings() -> BillingSettings:
    """Return the process-wide settings snapshot."""
    return BillingSettings.from_env()
