# tests/conftest.py
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from contentops.main import app
from contentops.db.database import Base

# Import models so metadata knows about all tables
import contentops.models  # noqa: F401
from contentops.models.tenant import Tenant
from contentops.utils.clock import utcnow


@pytest.fixture(scope="session")
def engine():
    """Create an in-memory SQLite database shared across tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        # One connection for every thread, so TestClient sees the same database
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def clean_db(engine):
    """Reset all tables before each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


@pytest.fixture()
def db(session_factory):
    """Return a new SQLAlchemy session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_tenant(db):
    """Create a tenant with an explicit balance."""
    def _make(
        tenant_id="tenant-a",
        credits_total=1000,
        credits_used=0,
        plan_id="starter",
        next_billing_at=None,
    ):
        tenant = Tenant(
            id=tenant_id,
            name=f"Store {tenant_id}",
            plan_id=plan_id,
            credits_total=credits_total,
            credits_used_this_cycle=credits_used,
            subscription_start=utcnow(),
            next_billing_at=next_billing_at or utcnow() + timedelta(days=30),
        )
        db.add(tenant)
        db.commit()
        db.refresh(tenant)
        return tenant
    return _make


@pytest.fixture
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture
def fake_catalog():
    """Catalog collaborator with async methods."""
    catalog = AsyncMock()
    catalog.push_result = AsyncMock(return_value="ext-ref-1")
    catalog.get_product = AsyncMock(return_value={"id": "p1", "name": "Old name"})
    catalog.list_collection_products = AsyncMock(return_value=[])
    return catalog


@pytest.fixture
def client(db, fake_catalog):
    """FastAPI test client that routes all DB deps to the test session."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    # Apply override for get_db dependency used across all routes
    from contentops.db.database import get_db as db_get_db
    from contentops.api.dependencies.providers import get_catalog

    app.dependency_overrides[db_get_db] = override_get_db
    app.dependency_overrides[get_catalog] = lambda: fake_catalog

    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def anyio_backend():
    """The service code is asyncio-based; run anyio-marked tests on asyncio."""
    return "asyncio"
