"""
Root test configuration and fixtures.

Database fixtures:
- db_session: SQLite in-memory (StaticPool), fresh schema per test
- session_factory: file-backed SQLite, for code that opens its own
  sessions from worker threads (context loader, route tests)

Billing fixtures:
- catalog / price_table: singletons reloaded from the real config files,
  with deterministic Stripe price ids
- seeded_plans / make_organization: plan rows and organizations
- make_file_organization: the same on the file-backed database
"""

import os
import uuid
from datetime import date, datetime
from typing import Callable, Dict, Generator, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")

from src.db_base import Base
import src.models  # noqa: F401 - registers every table
from src.config.stripe_prices import PriceTable, reset_price_table
from src.entitlements.catalog import get_plan_catalog, reset_plan_catalog
from src.models.organization import Organization
from src.models.plan import Plan
from src.models.subscription import BillingCycle, Subscription, SubscriptionStatus
from src.platform.rate_limit import set_rate_limiter
from src.repositories.plans_repo import PlansRepository

PRICE_ENV = {
    "STRIPE_PRICE_STARTER_MONTHLY": "price_starter_monthly",
    "STRIPE_PRICE_STARTER_ANNUAL": "price_starter_annual",
    "STRIPE_PRICE_PROFESSIONAL_MONTHLY": "price_professional_monthly",
    "STRIPE_PRICE_PROFESSIONAL_ANNUAL": "price_professional_annual",
    "STRIPE_PRICE_BUSINESS_MONTHLY": "price_business_monthly",
    "STRIPE_PRICE_BUSINESS_ANNUAL": "price_business_annual",
}


@pytest.fixture(scope="session", autouse=True)
def _httpx_app_kwarg_patch():
    """
    Compatibility patch for httpx>=0.28 where Client(app=...) is not supported.

    Starlette's TestClient passes app= into httpx.Client on older releases.
    """
    import httpx

    original_init = httpx.Client.__init__

    def patched_init(self, *args, **kwargs):
        kwargs.pop("app", None)
        return original_init(self, *args, **kwargs)

    httpx.Client.__init__ = patched_init
    try:
        yield
    finally:
        httpx.Client.__init__ = original_init


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """No shared Redis and no real Stripe credentials leak into tests."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    set_rate_limiter(None)
    yield
    set_rate_limiter(None)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine
    )
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """File-backed database shared by sessions opened on different threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


# =============================================================================
# Catalog and price table
# =============================================================================

@pytest.fixture
def catalog():
    reset_plan_catalog()
    yield get_plan_catalog()
    reset_plan_catalog()


@pytest.fixture
def price_table():
    reset_price_table()
    yield PriceTable(environ=PRICE_ENV)
    reset_price_table()


def seed_plans(session: Session, catalog) -> Dict[str, Plan]:
    PlansRepository(session).sync_catalog(catalog)
    return {plan.slug: plan for plan in session.query(Plan).all()}


@pytest.fixture
def seeded_plans(db_session, catalog) -> Dict[str, Plan]:
    return seed_plans(db_session, catalog)


def create_organization(
    session: Session,
    plans: Dict[str, Plan],
    plan_slug: Optional[str] = "starter",
    status: Optional[SubscriptionStatus] = SubscriptionStatus.ACTIVE,
    is_pilot: bool = False,
    pilot_start: Optional[date] = None,
    pilot_end: Optional[date] = None,
    converted: bool = False,
    customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    period_end: Optional[datetime] = None,
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
) -> Organization:
    """Insert an organization and (when status is given) its subscription row."""
    org = Organization(
        id=str(uuid.uuid4()),
        name=f"Org {uuid.uuid4().hex[:6]}",
        is_pilot=is_pilot,
        pilot_start_date=pilot_start,
        pilot_end_date=pilot_end,
        converted_to_paid=converted,
        stripe_customer_id=customer_id,
        subscription_status=status.value if status else None,
    )
    session.add(org)
    if status is not None:
        session.add(Subscription(
            organization_id=org.id,
            plan_id=plans[plan_slug].id if plan_slug else None,
            status=status,
            billing_cycle=billing_cycle,
            stripe_subscription_id=stripe_subscription_id,
            current_period_end=period_end,
        ))
    session.commit()
    return org


@pytest.fixture
def make_organization(db_session, seeded_plans) -> Callable[..., Organization]:
    def _make(**kwargs) -> Organization:
        return create_organization(db_session, seeded_plans, **kwargs)
    return _make


@pytest.fixture
def file_session(session_factory) -> Generator[Session, None, None]:
    """Setup/assertion session on the file-backed database."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_file_organization(file_session, catalog) -> Callable[..., Organization]:
    plans = seed_plans(file_session, catalog)

    def _make(**kwargs) -> Organization:
        return create_organization(file_session, plans, **kwargs)
    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: database-backed tests")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
