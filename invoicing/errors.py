from typing import Optional


class InvoicingError(Exception):
    """Base class for failures surfaced to callers of the invoicing service.

    ``status_code`` and ``code`` drive the JSON error response; ``invoice_id``
    is set when a local invoice row exists, so a retry can resume it instead
    of creating a duplicate.
    """

    status_code = 500
    code = "invoicing_error"

    def __init__(self, message: str, invoice_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.invoice_id = invoice_id

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.invoice_id is not None:
            body["invoice_id"] = self.invoice_id
        return body


class GatewayAuthError(InvoicingError):
    status_code = 502
    code = "gateway_auth_error"


class GatewayUnavailable(InvoicingError):
    status_code = 503
    code = "gateway_unavailable"


class GatewayUnauthorized(InvoicingError):
    """The gateway rejected the bearer token (HTTP 401).

    Raised by the gateway client only; the reconciliation service turns it
    into one re-authentication and one retry.
    """

    status_code = 502
    code = "gateway_unauthorized"


class InvoiceNotFound(InvoicingError):
    status_code = 404
    code = "invoice_not_found"


class UnknownUser(InvoicingError):
    status_code = 404
    code = "unknown_user"


class InvoiceAccessDenied(InvoicingError):
    status_code = 403
    code = "forbidden"


class PaymentNotProcessed(InvoicingError):
    status_code = 402
    code = "payment_not_processed"
