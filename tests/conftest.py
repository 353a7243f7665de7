import os

# Must be set before anything under invoicing/ is imported
os.environ["DATABASE_URL"] = "sqlite:///./test_invoicing.db"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["CALLBACK_BASE_URL"] = "http://testserver"

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from invoicing import models  # noqa: F401
from invoicing.config import GatewaySettings
from invoicing.credential_cache import Credential, CredentialCache
from invoicing.database import Base
from invoicing.gateway import GatewayClient
from invoicing.ledger import InvoiceLedger
from invoicing.rate_limit import limiter
from invoicing.models import utcnow

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

GATEWAY_URL = "https://gateway.test/v2"


class FakeGateway:
    """Stand-in for the processor's merchant API, served through httpx.MockTransport.

    Queue ``(status, body)`` tuples, or exceptions to raise, on
    ``invoice_responses`` / ``check_responses``; when a queue is empty the
    matching default is used.
    """

    def __init__(self):
        self.requests = []
        self.issued = 0
        self.auth_status = 200
        self.refresh_status = 200
        self.token_body = None
        self.invoice_responses = []
        self.check_responses = []
        self.invoice_default = (200, {"invoice_id": "g123", "qr_text": "qr-data"})
        self.check_default = (200, {"count": 0, "paid_amount": 0, "rows": []})

    def paths(self):
        return [path for path, _ in self.requests]

    def count(self, path):
        return self.paths().count(path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/v2"):]
        self.requests.append((path, request))

        if path == "/auth/token":
            return self._token(self.auth_status)
        if path == "/auth/refresh":
            return self._token(self.refresh_status)
        if path == "/invoice":
            return self._reply(request, self.invoice_responses, self.invoice_default)
        if path == "/payment/check":
            return self._reply(request, self.check_responses, self.check_default)
        return httpx.Response(404, json={"error": "unknown path"})

    def _token(self, status):
        if status != 200:
            return httpx.Response(status, json={"error": "NO_CREDENDIALS"})
        self.issued += 1
        if self.token_body is not None:
            return httpx.Response(200, json=self.token_body)
        return httpx.Response(200, json={
            "access_token": f"token-{self.issued}",
            "refresh_token": f"refresh-{self.issued}",
            "expires_in": 3600,
            "refresh_expires_in": 7200,
        })

    @staticmethod
    def _reply(request, queue, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def upstream():
    return FakeGateway()


@pytest.fixture
def settings():
    return GatewaySettings(
        base_url=GATEWAY_URL,
        username="merchant",
        password="merchant-secret",
        invoice_code="TEST_INVOICE",
        invoice_receiver_code="TEST_RECEIVER",
        invoice_description="Test invoice",
        sender_branch_code="App",
        timeout=2.0,
    )


@pytest.fixture
def cache():
    return CredentialCache(TestingSessionLocal)


@pytest.fixture
def ledger():
    return InvoiceLedger(TestingSessionLocal)


@pytest.fixture
def gateway(settings, cache, upstream):
    client = GatewayClient(settings, cache, transport=httpx.MockTransport(upstream))
    yield client
    client.close()


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def seed_credential(cache):
    def seed(token="cached-token", issued_at=None):
        cache.set(Credential(
            access_token=token,
            refresh_token="cached-refresh",
            expires_in=3600,
            refresh_expires_in=7200,
            issued_at=issued_at or utcnow(),
        ))
    return seed


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()
