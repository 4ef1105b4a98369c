"""
Health checks.

- Database connectivity (SELECT 1 on the app engine)
- Configuration presence (NO secret values are reported or logged)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from tryon_billing.config.settings import BillingSettings

logger = logging.getLogger(__name__)

SERVICE_NAME = "tryon-billing"


class HealthChecker:
    """Health check service for the billing API."""

    def __init__(self, engine: Optional[Engine], settings: BillingSettings):
        self.engine = engine
        self.settings = settings

    def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with 'status' (ok/error) and 'message'
        """
        if self.engine is None:
            return {"status": "error", "message": "Database not configured"}

        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {"status": "ok", "message": "Database connection successful"}
        except SQLAlchemyError as e:
            logger.error("Database connection failed", extra={"error": str(e)})
            return {"status": "error", "message": "Database connection failed"}

    def check_configuration(self) -> Dict[str, Any]:
        """Which integrations are configured; missing ones degrade features, not liveness."""
        configured = {
            "revenuecat_api_key": bool(self.settings.revenuecat_api_key),
            "revenuecat_webhook_secret": bool(self.settings.revenuecat_webhook_secret),
            "jwt_secret": bool(self.settings.jwt_secret),
        }
        missing = [name for name, present in configured.items() if not present]
        return {
            "status": "ok" if not missing else "degraded",
            "missing": missing,
        }

    def get_health_status(self) -> Dict[str, Any]:
        db_check = self.check_database()
        config_check = self.check_configuration()

        overall_status = "ok"
        if db_check["status"] != "ok":
            overall_status = "error"
        elif config_check["status"] != "ok":
            overall_status = "degraded"

        return {
            "status": overall_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "checks": {
                "database": db_check,
                "configuration": config_check,
            },
        }

    def log_config_status(self) -> None:
        """Log configuration status on startup."""
        config_check = self.check_configuration()
        logger.info("Configuration status", extra={
            "billing_lookup_enabled": self.settings.billing_lookup_enabled,
            "missing": config_check["missing"],
        })
        if config_check["missing"]:
            logger.warning("Missing configuration", extra={"missing": config_check["missing"]})
