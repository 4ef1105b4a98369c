"""
Engine and session management.

Sessions are request-scoped: the FastAPI dependency opens one per request
from the factory stored on app.state and always closes it.
"""

import logging
from typing import Generator, Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tryon_billing.db_base import Base
from tryon_billing.platform.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine; SQLite gets thread-sharing and a busy timeout."""
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        return create_engine(database_url, connect_args=connect_args, **kwargs)
    return create_engine(database_url, pool_pre_ping=True, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create all tables registered on Base.metadata."""
    import tryon_billing.models  # noqa: F401

    Base.metadata.create_all(engine)


def get_db_session(request: Request) -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    factory: Optional[sessionmaker] = getattr(request.app.state, "session_factory", None)
    if factory is None:
        raise ServiceUnavailableError("Database not configured")

    session = factory()
    try:
        yield session
    finally:
        session.close()
