"""
Pytest configuration and fixtures for testing
"""
import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.pool import StaticPool

from database import Database
from database_models import User
from services.tier_catalog import TierCatalog, TierEntry

# In-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PRO_MONTHLY = "price_pro_monthly"
PRO_ANNUAL = "price_pro_annual"
VIP_MONTHLY = "price_vip_monthly"
STUDENT_PRO_MONTHLY = "price_student_pro_monthly"


def make_catalog() -> TierCatalog:
    return TierCatalog([
        TierEntry(PRO_MONTHLY, "pro", "month", False, "prod_pro"),
        TierEntry(PRO_ANNUAL, "pro", "year", False, "prod_pro"),
        TierEntry(VIP_MONTHLY, "vip", "month", False, "prod_vip"),
        TierEntry(STUDENT_PRO_MONTHLY, "pro", "month", True, "prod_student_pro"),
        TierEntry("vip_yearly_lookup", "vip", "year"),
    ])


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
async def database():
    """
    Fixture that provides an isolated, in-memory SQLite database for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields the Database resource
    - Drops all tables after the test completes
    """
    db = Database(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await db.create_all()
    yield db
    await db.drop_all()
    await db.dispose()


@pytest.fixture
async def file_database(tmp_path):
    """File-backed database for tests that need several real connections at once."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def test_db(database):
    """A plain session on the test database."""
    async with database.session() as session:
        yield session


async def add_user(database: Database, user_id: str = "user_1", **fields) -> User:
    """Insert and commit a user row."""
    async with database.transaction() as session:
        user = User(id=user_id, email=fields.pop("email", f"{user_id}@example.com"), **fields)
        session.add(user)
    return user


async def fetch_user(database: Database, user_id: str = "user_1") -> User:
    async with database.session() as session:
        return await session.get(User, user_id)


class ApiHarness:
    """TestClient wired to a file database, a fake Stripe client and the test catalog."""

    def __init__(self, client, database_url, stripe):
        self.client = client
        self.database_url = database_url
        self.stripe = stripe

    def run(self, action):
        """Run ``action(database)`` against the app's database from the test thread."""
        async def go():
            database = Database(self.database_url)
            try:
                return await action(database)
            finally:
                await database.dispose()
        return asyncio.run(go())

    def headers(self, user_id="user_1", email=None, name=None):
        from auth_utils import create_jwt
        return {"Authorization": f"Bearer {create_jwt(user_id, email or f'{user_id}@example.com', name)}"}


@pytest.fixture
def api(tmp_path):
    from fastapi.testclient import TestClient

    from config.settings import settings
    from main import app
    from routers.billing_router import get_stripe_client, get_tier_catalog
    from tests.factories import WEBHOOK_SECRET, FakeStripeClient

    database_url = f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"
    stripe_fake = FakeStripeClient()
    original_database = app.state.database
    app.state.database = Database(database_url)
    app.dependency_overrides[get_stripe_client] = lambda: stripe_fake
    app.dependency_overrides[get_tier_catalog] = make_catalog
    try:
        with patch.object(settings, "jwt_secret_key", "test-jwt-secret"), \
                patch.object(settings, "stripe_webhook_secret", WEBHOOK_SECRET):
            with TestClient(app) as client:
                yield ApiHarness(client, database_url, stripe_fake)
    finally:
        app.dependency_overrides.clear()
        app.state.database = original_database
