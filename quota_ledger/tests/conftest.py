"""
Centralized Test Configuration.
"""

import itertools
import json

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from quota_ledger.app.main import app
from quota_ledger.app.db.session import get_db, Base
from quota_ledger.app.core.jwt import create_access_token
from quota_ledger.app.core.redis_client import get_redis
from quota_ledger.app.core.reliability import CircuitBreaker
from quota_ledger.app.domain.billing.gateway_client import PaymentGateway, get_payment_gateway
from quota_ledger.app.domain.billing.ledger_service import LedgerService
from quota_ledger.app.domain.billing.package_catalog import PackageCatalog
from quota_ledger.app.domain.billing.payment_verifier import PaymentVerifier, get_payment_verifier
from quota_ledger.app.models.enums import UserRole
import quota_ledger.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "test_key_secret"
TEST_WEBHOOK_SECRET = "test_webhook_secret"


# Event handler to enable foreign keys for SQLite
@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


class MockRedis:
    """In-memory stand-in for the few Redis commands the webhook listener uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def ping(self):
        return True

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def exists(self, key):
        return int(key in self.store)

    async def flushdb(self):
        self.store.clear()
        self.ttls.clear()


class FakeGateway:
    """Stand-in for the gateway orders API, served through httpx.MockTransport."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.requests = []
        self.fail_with = None  # HTTP status to answer with, None for success

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"code": "SERVER_ERROR"}})

        payload = json.loads(request.content)
        return httpx.Response(200, json={
            "id": f"order_test{next(self._ids):06d}",
            "entity": "order",
            "amount": payload["amount"],
            "currency": payload["currency"],
            "receipt": payload["receipt"],
            "status": "created",
        })

    def client(self, circuit_breaker=None) -> PaymentGateway:
        return PaymentGateway(
            base_url="https://gateway.test",
            key_id=TEST_KEY_ID,
            key_secret=TEST_KEY_SECRET,
            circuit_breaker=circuit_breaker or CircuitBreaker(name="test-gateway"),
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def gateway(fake_gateway):
    return fake_gateway.client()


@pytest.fixture
def verifier():
    return PaymentVerifier(TEST_KEY_SECRET, TEST_WEBHOOK_SECRET)


@pytest.fixture(autouse=True)
def apply_overrides(redis_client_session, gateway, verifier):
    """Route the app's external collaborators to test doubles."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_payment_verifier] = lambda: verifier
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def packages(db_session):
    await PackageCatalog.seed_defaults(db_session)
    return await PackageCatalog.list_active(db_session)


@pytest.fixture
async def tenant(db_session, packages):
    return await LedgerService.register_tenant(db_session, "Acme Seeds", tenant_id="tenant-acme")


@pytest.fixture
async def other_tenant(db_session, packages):
    return await LedgerService.register_tenant(db_session, "Bravo Agro", tenant_id="tenant-bravo")


def _auth_headers(role: UserRole, tenant_id: str = None, sub: str = "test-user") -> dict:
    token = create_access_token(sub, role.value, tenant_id=tenant_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def tenant_headers(tenant):
    return _auth_headers(UserRole.TENANT, tenant.id, sub="acme-operator")


@pytest.fixture
def other_tenant_headers(other_tenant):
    return _auth_headers(UserRole.TENANT, other_tenant.id, sub="bravo-operator")


@pytest.fixture
def admin_headers():
    return _auth_headers(UserRole.ADMIN, sub="ops-admin")


@pytest.fixture
def make_headers():
    """Bearer headers for an arbitrary role / tenant claim."""
    return _auth_headers
