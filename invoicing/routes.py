from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from invoicing.auth import verify_token
from invoicing.config import GatewaySettings
from invoicing.credential_cache import CredentialCache
from invoicing.database import SessionLocal
from invoicing.gateway import GatewayClient
from invoicing.ledger import InvoiceLedger
from invoicing.rate_limit import PAYMENT_LIMIT, limiter
from invoicing.service import ReconciliationService

router = APIRouter(prefix="/payment")


class InvoiceRequest(BaseModel):
    amount: int = Field(gt=0)


def get_service():
    gateway = GatewayClient(GatewaySettings.from_env(), CredentialCache(SessionLocal))
    try:
        yield ReconciliationService(InvoiceLedger(SessionLocal), gateway)
    finally:
        gateway.close()


@router.post("/invoices")
@limiter.limit(PAYMENT_LIMIT)
def create_invoice_api(
    request: Request,                      # slowapi reads the caller from it
    payload: InvoiceRequest,
    user_id: str = Depends(verify_token),
    service: ReconciliationService = Depends(get_service),
):
    created = service.create_invoice(payload.amount, user_id)
    return {
        "invoice_id": created.invoice_id,
        "gateway_invoice_id": created.gateway_invoice_id,
        "gateway": created.payload,
    }


# Called by the processor on payment, or polled by the client
@router.get("/verify/{invoice_id}/{user_id}")
@limiter.limit(PAYMENT_LIMIT)
def verify_invoice_api(
    request: Request,
    invoice_id: str,
    user_id: str,
    service: ReconciliationService = Depends(get_service),
):
    result = service.verify_invoice(invoice_id, user_id)
    return {"invoice_id": result.invoice_id, "status": result.status.value, "outcome": result.outcome}


@router.get("/invoices/{invoice_id}/payments")
@limiter.limit(PAYMENT_LIMIT)
def check_payment_api(
    request: Request,
    invoice_id: str,
    user_id: str = Depends(verify_token),
    service: ReconciliationService = Depends(get_service),
):
    return service.check_payment_status(invoice_id, user_id).to_dict()
