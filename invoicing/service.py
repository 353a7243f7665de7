from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import structlog

from invoicing.config import callback_base_url
from invoicing.errors import (
    GatewayAuthError,
    GatewayUnauthorized,
    InvoicingError,
    InvoiceAccessDenied,
    InvoiceNotFound,
    PaymentNotProcessed,
    UnknownUser,
)
from invoicing.gateway import GatewayClient, PaymentCheckResult
from invoicing.hooks import Collaborators
from invoicing.ledger import InvoiceLedger
from invoicing.models import Invoice, InvoiceStatus

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# One re-authentication and one retry after a 401, never more
MAX_AUTH_RETRIES = 1

SETTLED = "settled"
ALREADY_SETTLED = "already_settled"


@dataclass(frozen=True)
class InvoiceCreated:
    invoice_id: str
    gateway_invoice_id: str
    payload: dict


@dataclass(frozen=True)
class VerificationResult:
    invoice_id: str
    status: InvoiceStatus
    outcome: str

    @property
    def newly_settled(self) -> bool:
        return self.outcome == SETTLED


class ReconciliationService:
    """Creates gateway invoices and settles them exactly once.

    Settlement relies on ``InvoiceLedger.mark_success_if_pending``: however
    many webhook deliveries, client polls or manual rechecks race on the same
    invoice, only the caller whose conditional update moved it out of
    PENDING runs the ``on_settled`` hook. Everyone else gets
    ``already_settled`` back.
    """

    def __init__(self, ledger: InvoiceLedger, gateway: GatewayClient,
                 collaborators: Optional[Collaborators] = None,
                 callback_base: Optional[str] = None):
        self.ledger = ledger
        self.gateway = gateway
        self.collaborators = collaborators or Collaborators()
        self.callback_base = (callback_base or callback_base_url()).rstrip("/")

    def callback_url(self, invoice_id: str, user_id: str) -> str:
        return f"{self.callback_base}/payment/verify/{invoice_id}/{user_id}"

    def create_invoice(self, amount: int, user_id: str) -> InvoiceCreated:
        if not self.collaborators.user_exists(user_id):
            raise UnknownUser(f"User {user_id} does not exist")

        invoice_id = self.ledger.create_pending(user_id, amount)
        callback_url = self.callback_url(invoice_id, user_id)

        try:
            gateway_invoice = self._with_reauth(
                lambda: self.gateway.create_invoice(amount, invoice_id, callback_url)
            )
        except InvoicingError as exc:
            # The upstream invoice may exist despite the failure, so the row stays PENDING
            exc.invoice_id = invoice_id
            logger.warning("invoice_creation_failed", invoice_id=invoice_id, code=exc.code)
            raise

        self.ledger.attach_gateway_id(invoice_id, gateway_invoice.invoice_id)
        logger.info("gateway_invoice_attached", invoice_id=invoice_id,
                    gateway_invoice_id=gateway_invoice.invoice_id)
        return InvoiceCreated(
            invoice_id=invoice_id,
            gateway_invoice_id=gateway_invoice.invoice_id,
            payload=gateway_invoice.payload,
        )

    def verify_invoice(self, invoice_id: str, requesting_user_id: str) -> VerificationResult:
        invoice = self._load_owned(invoice_id, requesting_user_id)

        if not invoice.gateway_invoice_id:
            raise PaymentNotProcessed("Invoice has not been registered with the gateway yet", invoice_id=invoice_id)

        result = self._with_reauth(lambda: self.gateway.check_payments(invoice.gateway_invoice_id))
        if not result.is_paid:
            raise PaymentNotProcessed("Payment has not been made yet", invoice_id=invoice_id)

        if self.ledger.mark_success_if_pending(invoice_id):
            self.collaborators.on_settled(invoice.id, invoice.user_id, invoice.amount)
            return VerificationResult(invoice_id=invoice_id, status=InvoiceStatus.SUCCESS, outcome=SETTLED)

        current = self.ledger.find_by_id(invoice_id)
        if current is None:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")
        logger.info("invoice_already_settled", invoice_id=invoice_id, status=current.status.value)
        return VerificationResult(invoice_id=invoice_id, status=current.status, outcome=ALREADY_SETTLED)

    def check_payment_status(self, invoice_id: str, requesting_user_id: str) -> PaymentCheckResult:
        invoice = self._load_owned(invoice_id, requesting_user_id)
        if not invoice.gateway_invoice_id:
            return PaymentCheckResult(count=0)
        return self._with_reauth(lambda: self.gateway.check_payments(invoice.gateway_invoice_id))

    def _load_owned(self, invoice_id: str, user_id: str) -> Invoice:
        invoice = self.ledger.find_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")
        if invoice.user_id != user_id:
            raise InvoiceAccessDenied("You do not have permission to access this invoice")
        return invoice

    def _with_reauth(self, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except GatewayUnauthorized:
                if attempt >= MAX_AUTH_RETRIES:
                    logger.error("gateway_unauthorized_after_reauth")
                    raise GatewayAuthError("Gateway rejected freshly issued credentials")
                attempt += 1
                logger.info("gateway_reauthenticating", attempt=attempt)
                self.gateway.authenticate()
