"""
Centralized Test Configuration.
"""

import pytest
import httpx
from datetime import datetime
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from payments_backend.app.main import app
from payments_backend.app.db.session import get_db, Base
from payments_backend.app.core.jwt import create_access_token
from payments_backend.app.core.redis_client import get_redis
from payments_backend.app.gateway.mpesa_client import MpesaClient, MpesaConfig, SANDBOX_BASE_URL
from payments_backend.app.models.order import Order
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.services.payment_records import PaymentRecordTracker
from payments_backend.app.services.reconciliation import ReconciliationFailureLog
from payments_backend.app.services.reversal_log import ReversalLog
from payments_backend.app.services.invoice_locking import InvoiceLockManager
import payments_backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

ADMIN_ID = "admin-1"
CUSTOMER_ID = "cust-1"
OTHER_CUSTOMER_ID = "cust-2"


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
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


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Services bound to the shared session

@pytest.fixture
def ledger(db_session):
    return InvoiceLedger(db_session, timeout_seconds=5)


@pytest.fixture
def tracker(db_session):
    return PaymentRecordTracker(db_session, timeout_seconds=5)


@pytest.fixture
def reversal_log(db_session):
    return ReversalLog(db_session, timeout_seconds=5)


@pytest.fixture
def failure_log(db_session):
    return ReconciliationFailureLog(db_session, timeout_seconds=5)


@pytest.fixture
def lock_manager(redis_client_session):
    return InvoiceLockManager(redis_client_session, ttl_seconds=60)


# Orders (owned by the ordering service, seeded directly)

@pytest.fixture
def make_order(db_session):
    async def _make(order_id: str = "order-1", user_id: str = CUSTOMER_ID, total_amount: float = 200.0):
        order = Order(id=order_id, user_id=user_id, status="pending", total_amount=total_amount)
        db_session.add(order)
        await db_session.commit()
        return order
    return _make


# Tokens

def _token(user_id: str, role: str) -> str:
    return create_access_token(data={"sub": f"{user_id}@example.com", "user_id": user_id, "role": role})


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {_token(ADMIN_ID, 'ADMIN')}"}


@pytest.fixture
def customer_headers():
    return {"Authorization": f"Bearer {_token(CUSTOMER_ID, 'CUSTOMER')}"}


@pytest.fixture
def other_customer_headers():
    return {"Authorization": f"Bearer {_token(OTHER_CUSTOMER_ID, 'CUSTOMER')}"}


# Gateway

MPESA_TEST_CONFIG = dict(
    consumer_key="ck",
    consumer_secret="cs",
    business_short_code="174379",
    pass_key="passkey",
    callback_url="https://example.com/v1/mpesa/callback",
    environment="sandbox",
    timeout_seconds=5.0,
)


class GatewayRecorder:
    """Routes MockTransport requests to per-path handlers and records them."""

    def __init__(self):
        self.requests = []
        self.handlers = {}
        self.token_calls = 0
        self.token_expires_in = "3599"

    def on(self, path, handler):
        self.handlers[path] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/v1/generate":
            self.token_calls += 1
            return httpx.Response(
                200,
                json={"access_token": f"token-{self.token_calls}", "expires_in": self.token_expires_in},
            )
        handler = self.handlers.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"errorCode": "404.001", "errorMessage": "no route"})
        return handler(request)

    def requests_to(self, path):
        return [r for r in self.requests if r.url.path == path]

    def accept_stk_push(self, checkout_request_id="ws_CO_191220191020363925"):
        self.on("/mpesa/stkpush/v1/processrequest", lambda request: httpx.Response(200, json={
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": checkout_request_id,
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }))


@pytest.fixture
def gateway_recorder():
    return GatewayRecorder()


@pytest.fixture
async def make_mpesa_client(gateway_recorder):
    clients = []

    def _make(now=datetime.now, **overrides):
        config = MpesaConfig(**{**MPESA_TEST_CONFIG, **overrides})
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(gateway_recorder), base_url=SANDBOX_BASE_URL
        )
        mpesa = MpesaClient(config, http_client=http_client, now=now)
        clients.append(mpesa)
        return mpesa

    yield _make

    for mpesa in clients:
        await mpesa.aclose()

