from typing import Optional

import structlog

from invoicing.models import Invoice, InvoiceStatus, utcnow

logger = structlog.get_logger(__name__)


class InvoiceLedger:
    """Durable record of the invoices this service has issued.

    Status changes go through ``_transition_if_pending``, a single
    conditional UPDATE, so that concurrent callers on any number of
    processes agree on which one of them moved the invoice out of PENDING.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def create_pending(self, user_id: str, amount: int) -> str:
        with self._session_factory() as db:
            invoice = Invoice(user_id=user_id, amount=amount, status=InvoiceStatus.PENDING)
            db.add(invoice)
            db.commit()
            invoice_id = invoice.id

        logger.info("invoice_created", invoice_id=invoice_id, user_id=user_id, amount=amount)
        return invoice_id

    def attach_gateway_id(self, invoice_id: str, gateway_invoice_id: str) -> None:
        with self._session_factory() as db:
            db.query(Invoice).filter_by(id=invoice_id).update(
                {"gateway_invoice_id": gateway_invoice_id, "updated_at": utcnow()},
                synchronize_session=False,
            )
            db.commit()

    def find_by_id(self, invoice_id: str) -> Optional[Invoice]:
        with self._session_factory() as db:
            invoice = db.get(Invoice, invoice_id)
            if invoice is not None:
                db.expunge(invoice)
            return invoice

    def mark_success_if_pending(self, invoice_id: str) -> bool:
        return self._transition_if_pending(invoice_id, InvoiceStatus.SUCCESS)

    def mark_failed_if_pending(self, invoice_id: str) -> bool:
        return self._transition_if_pending(invoice_id, InvoiceStatus.FAILED)

    def _transition_if_pending(self, invoice_id: str, status: InvoiceStatus) -> bool:
        # UPDATE invoices SET status = :status WHERE id = :id AND status = 'PENDING'
        with self._session_factory() as db:
            rows = (
                db.query(Invoice)
                .filter(Invoice.id == invoice_id, Invoice.status == InvoiceStatus.PENDING)
                .update({"status": status, "updated_at": utcnow()}, synchronize_session=False)
            )
            db.commit()

        if rows == 1:
            logger.info("invoice_transitioned", invoice_id=invoice_id, status=status.value)
            return True
        return False
