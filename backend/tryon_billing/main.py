"""
FastAPI application for the try-on billing core.

Run locally:
    uvicorn tryon_billing.main:build_app --factory --reload

Importing this module builds nothing and leaves logging alone; build_app()
is the process entry point.

State bound on app.state:
- settings: BillingSettings snapshot
- engine / session_factory: SQLAlchemy engine and request-session factory
- billing_client: optional injected RevenueCat client (tests)
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from sqlalchemy.engine import Engine

from tryon_billing import __version__
from tryon_billing.api.routes import credits, entitlements, generations, health, offers, webhooks_revenuecat
from tryon_billing.config.settings import BillingSettings, get_settings
from tryon_billing.database.session import create_db_engine, create_schema, create_session_factory
from tryon_billing.platform.errors import AppError, ErrorHandlerMiddleware, app_error_response, get_correlation_id
from tryon_billing.platform.health import HealthChecker

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[BillingSettings] = None,
    engine: Optional[Engine] = None,
    billing_client=None,
    create_tables: bool = False,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings snapshot (defaults to the environment)
        engine: Engine to bind (defaults to one built from settings.database_url)
        billing_client: Billing platform client override
        create_tables: Create missing tables on startup (local development)
    """
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_tables:
            create_schema(engine)
        HealthChecker(engine, settings).log_config_status()
        yield
        engine.dispose()

    app = FastAPI(title="Try-on Billing", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.billing_client = billing_client

    app.add_middleware(ErrorHandlerMiddleware)

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        logger.warning("Application error", extra={
            "error_code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
        })
        return app_error_response(exc, get_correlation_id(request))

    app.include_router(health.router)
    app.include_router(entitlements.router)
    app.include_router(credits.router)
    app.include_router(offers.router)
    app.include_router(generations.router)
    app.include_router(webhooks_revenuecat.router)
    return app


def build_app() -> FastAPI:
    """Process entry point: configure logging, then build the app from the environment."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return create_app(create_tables=True)


# For development server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tryon_billing.main:build_app", factory=True, host="0.0.0.0", port=8000, reload=True)
