"""
Payment gateway client.

Two operations are consumed: capture(token, amount) and void(transaction_id).
Each is a single HTTP call bounded by a client-side timeout; failures raise
GatewayError and are never retried here.

Sandbox mode (no store id / api token configured) approves locally so the
engine can run end-to-end in development.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

import httpx

from bike_rentals.config import settings
from bike_rentals.errors import GatewayError

logger = logging.getLogger(__name__)

ALREADY_VOIDED = "already_voided"


@dataclass
class GatewayResponse:
    transaction_id: str | None
    message: str
    code: str | None = None


class PaymentGateway:
    """HTTP client for the external capture/void API"""

    def __init__(
        self,
        base_url: str | None = None,
        store_id: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.payment_gateway_url).rstrip("/")
        self.store_id = settings.payment_store_id if store_id is None else store_id
        self.api_token = settings.payment_api_token if api_token is None else api_token
        self.timeout = timeout or settings.payment_timeout_seconds
        self.transport = transport

    @property
    def sandbox(self) -> bool:
        return not (self.store_id and self.api_token)

    def _post(self, path: str, payload: dict) -> dict:
        body = {"store_id": self.store_id, "api_token": self.api_token, **payload}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.post(f"{self.base_url}{path}", json=body)
                resp.raise_for_status()
                return resp.json()
        except httpx.TimeoutException:
            logger.warning("Payment gateway timed out on %s", path)
            raise GatewayError("Payment gateway timed out", code="timeout")
        except httpx.HTTPStatusError as e:
            logger.warning("Payment gateway returned %s on %s", e.response.status_code, path)
            raise GatewayError(f"Payment gateway error ({e.response.status_code})", code="http_error")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Payment gateway unavailable on %s: %s", path, e)
            raise GatewayError("Payment gateway unavailable", code="unavailable")

    def capture(self, token: str, amount: Decimal) -> GatewayResponse:
        """Capture ``amount`` against a previously tokenized payment"""
        if self.sandbox:
            logger.info("Sandbox capture of %s", amount)
            return GatewayResponse(transaction_id=f"sandbox-txn-{uuid.uuid4().hex[:12]}", message="CAPTURED")

        data = self._post("/capture", {"token": token, "amount": f"{amount:.2f}"})
        if not data.get("approved"):
            message = data.get("message") or "Capture declined"
            logger.info("Capture declined: %s", message)
            raise GatewayError(message, code=data.get("code") or "declined")
        return GatewayResponse(
            transaction_id=data.get("transaction_id"),
            message=data.get("message") or "CAPTURED",
            code=data.get("code"),
        )

    def void(self, transaction_id: str) -> GatewayResponse:
        """Void or refund a captured transaction; an already-voided one counts as success"""
        if self.sandbox:
            logger.info("Sandbox void of %s", transaction_id)
            return GatewayResponse(transaction_id=transaction_id, message="VOIDED")

        data = self._post("/void", {"transaction_id": transaction_id})
        if data.get("code") == ALREADY_VOIDED:
            return GatewayResponse(transaction_id=transaction_id, message="ALREADY VOIDED", code=ALREADY_VOIDED)
        if not data.get("approved"):
            message = data.get("message") or "Void declined"
            logger.info("Void declined for %s: %s", transaction_id, message)
            raise GatewayError(message, code=data.get("code") or "declined")
        return GatewayResponse(transaction_id=transaction_id, message=data.get("message") or "VOIDED")


# Global instance
_gateway = None


def get_payment_gateway() -> PaymentGateway:
    """Get or create payment gateway instance"""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
        if _gateway.sandbox:
            logger.warning("Payment gateway running in SANDBOX mode; set PAYMENT_STORE_ID and PAYMENT_API_TOKEN")
    return _gateway
