# tests/conftest.py

import os

# Settings are read at import time; point them at a throwaway database first.
os.environ["ENV"] = "local"
os.environ["DATABASE_URL_LOCAL"] = "sqlite:///./test_marketplace_payments.db"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_marketplace"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_marketplace"
os.environ["INTERNAL_API_KEY"] = "internal-test-key"
os.environ["JWT_SECRET"] = "test-jwt-secret"

import pytest
from starlette.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy_utils import create_database, database_exists, drop_database
from unittest.mock import MagicMock, AsyncMock

from marketplace_payments.main import app
from marketplace_payments.db.session import get_db
from marketplace_payments.core.config import settings
from marketplace_payments.models import Base
from marketplace_payments.services import campaign_funding
from marketplace_payments.services.payment.provider_interface import (
    PaymentIntentResult,
    PaymentIntentStatusEnum,
    TransferResult,
)


# --- Test Database Setup ---
engine = create_engine(settings.DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    if database_exists(engine.url):
        drop_database(engine.url)
    create_database(engine.url)
    yield
    engine.dispose()
    drop_database(engine.url)


@pytest.fixture(scope="function")
def db_session():
    """
    A session on freshly created tables.

    Services commit their own transactions, so isolation comes from
    recreating the schema for every test rather than rolling back.
    """
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_inflight_polls():
    campaign_funding._inflight_polls.clear()
    yield
    campaign_funding._inflight_polls.clear()


# --- Mock Dependencies Setup ---
@pytest.fixture
def provider():
    """A payment provider whose processor calls never leave the process."""
    mock = MagicMock()
    mock.code = "stripe"
    mock.create_payment_intent = AsyncMock(
        return_value=PaymentIntentResult(
            intent_id="pi_test_001",
            client_secret="pi_test_001_secret_abc",
            status=PaymentIntentStatusEnum.REQUIRES_PAYMENT_METHOD,
        )
    )
    mock.get_payment_intent = AsyncMock()
    mock.cancel_payment_intent = AsyncMock(return_value=None)
    mock.create_transfer = AsyncMock(
        return_value=TransferResult(
            transfer_id="tr_test_001",
            amount=25000,
            currency="usd",
            destination_account_id="acct_creator_001",
        )
    )
    mock.get_transfer = AsyncMock()
    mock.reverse_transfer = AsyncMock(return_value="trr_test_001")
    mock.create_connected_account = AsyncMock()
    mock.get_connected_account = AsyncMock()
    mock.create_account_link = AsyncMock()
    return mock


@pytest.fixture
def notifier():
    return MagicMock()


# --- Test Client Fixtures ---
@pytest.fixture(scope="function")
def test_client(db_session):
    """
    Provides a TestClient backed by the test database.
    Authentication is real: use tests.utils.auth for headers.
    """

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
