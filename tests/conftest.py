# tests/conftest.py
"""
Shared fixtures: in-memory database, catalog, user factories and mocked
Stripe / email collaborators.
"""
import os

# Settings are read at import time; configure before importing the app.
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ENABLE_BILLING_SCHEDULER"] = "false"
os.environ["SEED_DEFAULT_PLANS"] = "false"
os.environ.pop("STRIPE_SECRET_KEY", None)
os.environ.pop("SENDGRID_API_KEY", None)

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core.database import create_db_and_tables, get_session
from main import app
from models.models import Profile, Subscription, SubscriptionStatus, User, utcnow
from services.email_service import EmailService, get_email_service
from services.plan_catalog import create_default_plans, list_active_plans
from services.stripe_gateway import StripeGateway, get_gateway


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def plans(session):
    """Default catalog keyed by name (free / pro / business)."""
    create_default_plans(session)
    return {plan.name: plan for plan in list_active_plans(session)}


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_user(session):
    """Create a directory user plus profile."""

    def _make_user(
        email="user@example.com",
        full_name="Test User",
        language="en",
        customer_id=None,
        plan=None,
    ):
        user = User(email=email, full_name=full_name)
        session.add(user)
        session.commit()
        session.refresh(user)
        session.add(
            Profile(
                id=user.id,
                full_name=full_name,
                language=language,
                stripe_customer_id=customer_id,
                plan_id=plan.id if plan else None,
            )
        )
        session.commit()
        return user

    return _make_user


@pytest.fixture
def make_subscription(session):
    def _make_subscription(
        user,
        plan,
        status=SubscriptionStatus.TRIALING,
        ends_in=timedelta(days=7),
        stripe_subscription_id=None,
    ):
        subscription = Subscription(
            user_id=user.id,
            plan_id=plan.id if plan else None,
            status=status.value,
            current_period_end=utcnow() + ends_in,
            stripe_subscription_id=stripe_subscription_id,
        )
        session.add(subscription)
        session.commit()
        session.refresh(subscription)
        return subscription

    return _make_subscription


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def gateway():
    """Stripe gateway mock; customers carry no user_id metadata by default."""
    mock = MagicMock(spec=StripeGateway)
    mock.configured = True
    mock.retrieve_customer.return_value = {"id": "cus_test", "metadata": {}}
    return mock


@pytest.fixture
def email_sender():
    mock = MagicMock(spec=EmailService)
    mock.send_email.return_value = True
    return mock


@pytest.fixture
def client(session, gateway, email_sender):
    """Test client with the session, gateway and email sink overridden."""
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_email_service] = lambda: email_sender
    yield TestClient(app)
    app.dependency_overrides.clear()
