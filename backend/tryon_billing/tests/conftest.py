"""Shared fixtures: SQLite databases, sessions, billing client double, app client."""

import uuid
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from tryon_billing.config.settings import BillingSettings
from tryon_billing.database.session import create_db_engine, create_schema, create_session_factory
from tryon_billing.tests.factories import JWT_SECRET, WEBHOOK_SECRET, make_token


@pytest.fixture
def user_id():
    return str(uuid.uuid4())


@pytest.fixture
def engine():
    """Shared in-memory SQLite database (one connection for every session)."""
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite database for multi-threaded tests."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def billing_client():
    """Billing platform client double; get_subscriber returns None unless configured."""
    client = AsyncMock()
    client.get_subscriber = AsyncMock(return_value=None)
    return client


@pytest.fixture
def settings():
    return BillingSettings(
        database_url="sqlite://",
        revenuecat_api_key="rc_test_key",
        revenuecat_webhook_secret=WEBHOOK_SECRET,
        jwt_secret=JWT_SECRET,
    )


@pytest.fixture
def app(settings, engine, billing_client):
    from tryon_billing.main import create_app

    return create_app(settings=settings, engine=engine, billing_client=billing_client)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}
