from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog

from invoicing.config import GatewaySettings
from invoicing.credential_cache import Credential, CredentialCache
from invoicing.errors import GatewayAuthError, GatewayUnauthorized, GatewayUnavailable

logger = structlog.get_logger(__name__)

PAYMENT_CHECK_PAGE_LIMIT = 100


@dataclass(frozen=True)
class GatewayInvoice:
    invoice_id: str
    payload: dict


@dataclass(frozen=True)
class PaymentCheckResult:
    count: int
    paid_amount: Optional[float] = None
    rows: list = field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.count > 0

    def to_dict(self) -> dict:
        return {"count": self.count, "paid_amount": self.paid_amount, "rows": self.rows}


class GatewayClient:
    """Thin client for the payment processor's merchant API.

    The client never retries on its own. A 401 on a bearer call is raised
    as ``GatewayUnauthorized`` and the caller decides whether to
    re-authenticate.
    """

    def __init__(self, settings: GatewaySettings, cache: CredentialCache,
                 transport: Optional[httpx.BaseTransport] = None):
        self.settings = settings
        self.cache = cache
        self._client = httpx.Client(
            base_url=settings.base_url,
            timeout=settings.timeout,
            transport=transport,
        )

    def close(self):
        self._client.close()

    def authenticate(self) -> Credential:
        response = self._send("POST", "/auth/token", auth=(self.settings.username, self.settings.password))
        if not response.is_success:
            logger.warning("gateway_auth_failed", status_code=response.status_code)
            raise GatewayAuthError(f"Gateway authentication failed with status {response.status_code}")

        credential = self._parse_credential(response)
        self.cache.set(credential)
        logger.info("gateway_authenticated")
        return credential

    def refresh(self, credential: Credential) -> Credential:
        """Renew the access token with the refresh token, falling back to a full login."""
        response = self._send(
            "POST", "/auth/refresh",
            headers={"Authorization": f"Bearer {credential.refresh_token}"},
        )
        if not response.is_success:
            logger.info("gateway_refresh_rejected", status_code=response.status_code)
            return self.authenticate()

        refreshed = self._parse_credential(response)
        self.cache.set(refreshed)
        logger.info("gateway_token_refreshed")
        return refreshed

    def bearer_token(self) -> str:
        credential = self.cache.get()
        if credential is None:
            credential = self.authenticate()
        elif credential.is_expired():
            if credential.can_refresh():
                credential = self.refresh(credential)
            else:
                credential = self.authenticate()
        return credential.access_token

    def create_invoice(self, amount: int, order_ref: str, callback_url: str) -> GatewayInvoice:
        body = {
            "invoice_code": self.settings.invoice_code,
            "sender_invoice_no": order_ref,
            "invoice_receiver_code": self.settings.invoice_receiver_code,
            "invoice_description": self.settings.invoice_description,
            "sender_branch_code": self.settings.sender_branch_code,
            "amount": amount,
            "callback_url": callback_url,
        }
        data = self._bearer_post("/invoice", body)

        invoice_id = data.get("invoice_id")
        if not invoice_id:
            raise GatewayUnavailable("Gateway response did not include an invoice_id")
        return GatewayInvoice(invoice_id=invoice_id, payload=data)

    def check_payments(self, gateway_invoice_id: str) -> PaymentCheckResult:
        body = {
            "object_type": "INVOICE",
            "object_id": gateway_invoice_id,
            "offset": {"page_number": 1, "page_limit": PAYMENT_CHECK_PAGE_LIMIT},
        }
        data = self._bearer_post("/payment/check", body)

        try:
            count = int(data.get("count") or 0)
            rows = list(data.get("rows") or [])
        except (TypeError, ValueError) as exc:
            raise GatewayUnavailable("Gateway returned a malformed payment check") from exc
        return PaymentCheckResult(count=count, paid_amount=data.get("paid_amount"), rows=rows)

    def _bearer_post(self, path: str, body: dict) -> dict:
        headers = {"Authorization": f"Bearer {self.bearer_token()}"}
        response = self._send("POST", path, json=body, headers=headers)

        if response.status_code == 401:
            raise GatewayUnauthorized(f"Gateway rejected the access token for {path}")
        if not response.is_success:
            logger.warning("gateway_request_failed", path=path, status_code=response.status_code)
            raise GatewayUnavailable(f"Gateway returned status {response.status_code} for {path}")
        return self._json(response)

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("gateway_timeout", path=path)
            raise GatewayUnavailable(f"Gateway timed out on {path}") from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway_transport_error", path=path, error=str(exc))
            raise GatewayUnavailable(f"Gateway request to {path} failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayUnavailable("Gateway returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise GatewayUnavailable("Gateway returned an unexpected body")
        return data

    def _parse_credential(self, response: httpx.Response) -> Credential:
        data = self._json(response)
        if not data.get("access_token"):
            raise GatewayAuthError("Gateway token response did not include an access_token")
        try:
            return Credential.from_token_response(data)
        except (TypeError, ValueError) as exc:
            raise GatewayAuthError("Gateway returned a malformed token response") from exc
