import pytest
from fastapi.testclient import TestClient
from jose import jwt

from invoicing.hooks import Collaborators
from invoicing.main import app as fastapi_app
from invoicing.models import GatewayCredential, Invoice, InvoiceStatus
from invoicing.routes import get_service
from invoicing.service import ReconciliationService


@pytest.fixture
def on_settled(mocker):
    return mocker.Mock()


@pytest.fixture
def client(ledger, gateway, on_settled):
    collaborators = Collaborators(on_settled=on_settled)
    service = ReconciliationService(ledger, gateway, collaborators, callback_base="http://testserver")
    fastapi_app.dependency_overrides[get_service] = lambda: service

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


def test_full_invoice_lifecycle_integration(client, upstream, on_settled, session_factory):
    """
    1. Create invoice (API -> ledger + gateway, first login happens on demand)
    2. Processor callback before payment (not processed, stays PENDING)
    3. Processor callback after payment (settled, hook fired once)
    4. Redelivered callback (already settled, hook not fired again)
    """
    token = jwt.encode({"sub": "u1"}, "test-secret", algorithm="HS256")

    # --- 1. CREATE INVOICE ---
    response = client.post(
        "/payment/invoices",
        json={"amount": 5000},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 200
    invoice_id = response.json()["invoice_id"]
    assert upstream.paths() == ["/auth/token", "/invoice"]

    db = session_factory()
    invoice = db.get(Invoice, invoice_id)
    assert invoice.gateway_invoice_id == "g123"
    assert invoice.status == InvoiceStatus.PENDING
    assert db.query(GatewayCredential).count() == 1
    db.close()

    # --- 2. CALLBACK BEFORE PAYMENT ---
    response = client.get(f"/payment/verify/{invoice_id}/u1")
    assert response.status_code == 402
    on_settled.assert_not_called()

    # --- 3. CALLBACK AFTER PAYMENT ---
    upstream.check_default = (200, {"count": 1, "paid_amount": 5000, "rows": [{"payment_id": "p1"}]})

    response = client.get(f"/payment/verify/{invoice_id}/u1")
    assert response.status_code == 200
    assert response.json() == {"invoice_id": invoice_id, "status": "SUCCESS", "outcome": "settled"}
    on_settled.assert_called_once_with(invoice_id, "u1", 5000)

    # --- 4. REDELIVERED CALLBACK ---
    response = client.get(f"/payment/verify/{invoice_id}/u1")
    assert response.status_code == 200
    assert response.json()["outcome"] == "already_settled"
    assert on_settled.call_count == 1

    db = session_factory()
    assert db.get(Invoice, invoice_id).status == InvoiceStatus.SUCCESS
    db.close()


def test_expired_gateway_token_recovered_during_creation(client, upstream, cache, seed_credential):
    seed_credential(token="revoked-token")
    upstream.invoice_responses.append((401, {"error": "UNAUTHORIZED"}))
    token = jwt.encode({"sub": "u1"}, "test-secret", algorithm="HS256")

    response = client.post(
        "/payment/invoices",
        json={"amount": 2500},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 200
    assert upstream.paths() == ["/invoice", "/auth/token", "/invoice"]
    assert cache.get().access_token == "token-1"


def test_rejected_gateway_credentials(client, upstream, session_factory):
    upstream.auth_status = 401
    token = jwt.encode({"sub": "u1"}, "test-secret", algorithm="HS256")

    response = client.post(
        "/payment/invoices",
        json={"amount": 2500},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 502
    body = response.json()
    assert body["code"] == "gateway_auth_error"

    db = session_factory()
    assert db.get(Invoice, body["invoice_id"]).status == InvoiceStatus.PENDING
    db.close()
