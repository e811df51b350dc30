"""
Payment Gateway Client — Razorpay orders, payment lookups and signature checks.

Every outbound call carries a timeout. Timeouts raise GatewayTimeoutError and
other transport/API failures raise GatewayError; callers log them and leave
the attempt for the reconciliation sweep instead of retrying inline.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import razorpay
import requests

from storefront.config import get_settings
from storefront.utils.errors import GatewayError, GatewayTimeoutError

logger = logging.getLogger("storefront.payments.gateway")

CAPTURED_STATUSES = ("captured", "authorized")


def to_paise(amount_rupees: float) -> int:
    return int(round(float(amount_rupees) * 100))


@dataclass
class GatewayOrder:
    id: str
    amount: int          # paise
    currency: str
    receipt: Optional[str] = None


@dataclass
class PaymentDetails:
    id: str
    order_id: Optional[str]
    amount: int          # paise
    currency: str = "INR"
    status: str = ""
    method: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    raw: Dict = field(default_factory=dict, repr=False)

    @property
    def is_captured(self) -> bool:
        return self.status in CAPTURED_STATUSES

    @classmethod
    def from_entity(cls, entity: Dict) -> "PaymentDetails":
        return cls(
            id=entity.get("id", ""),
            order_id=entity.get("order_id"),
            amount=int(entity.get("amount") or 0),
            currency=entity.get("currency") or "INR",
            status=entity.get("status") or "",
            method=entity.get("method"),
            error_code=entity.get("error_code"),
            error_description=entity.get("error_description"),
            raw=entity,
        )


def _hmac_matches(secret: str, message: bytes, signature: Optional[str]) -> bool:
    """Constant-time HMAC-SHA256 hex comparison; malformed input is simply a mismatch."""
    if not secret or not signature or not isinstance(signature, str):
        return False
    try:
        provided = bytes.fromhex(signature.strip())
    except ValueError:
        return False
    expected = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)


class RazorpayGateway:
    """Thin wrapper over the Razorpay SDK with our error taxonomy."""

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[razorpay.Client] = None,
    ):
        settings = get_settings()
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self.currency = settings.CURRENCY
        if not self.key_id or not self.key_secret:
            logger.warning("Razorpay credentials not configured; payment calls will fail")
        self.client = client or razorpay.Client(auth=(self.key_id, self.key_secret))

    # ── Outbound calls ──────────────────────────────────────────────

    def _call(self, operation: str, func, *args, **kwargs):
        try:
            return func(*args, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            logger.warning("Razorpay %s timed out after %ss", operation, self.timeout)
            raise GatewayTimeoutError(f"Payment gateway timed out during {operation}") from exc
        except (razorpay.errors.BadRequestError, razorpay.errors.ServerError,
                razorpay.errors.GatewayError, requests.exceptions.RequestException) as exc:
            logger.error("Razorpay %s failed: %s", operation, exc)
            raise GatewayError(f"Payment gateway error during {operation}") from exc

    def create_order(self, amount_rupees: float, receipt_id: str, notes: Optional[Dict[str, str]] = None) -> GatewayOrder:
        """Create a gateway order; the amount is sent in paise."""
        data = {
            "amount": to_paise(amount_rupees),
            "currency": self.currency,
            "receipt": receipt_id,
            "notes": notes or {},
        }
        order = self._call("order.create", self.client.order.create, data=data)
        return GatewayOrder(
            id=order["id"],
            amount=int(order.get("amount", data["amount"])),
            currency=order.get("currency", self.currency),
            receipt=order.get("receipt", receipt_id),
        )

    def fetch_payment(self, payment_id: str) -> PaymentDetails:
        entity = self._call("payment.fetch", self.client.payment.fetch, payment_id)
        return PaymentDetails.from_entity(entity)

    def fetch_order_payments(self, order_id: str) -> List[PaymentDetails]:
        """All payment attempts made against one gateway order."""
        result = self._call("order.payments", self.client.order.payments, order_id)
        return [PaymentDetails.from_entity(item) for item in result.get("items", [])]

    # ── Signatures ──────────────────────────────────────────────────

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        """HMAC-SHA256(order_id|payment_id, key_secret) as returned to the checkout modal."""
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return _hmac_matches(self.key_secret, message, signature)

    def verify_webhook_signature(self, raw_body: Union[bytes, str], signature: Optional[str]) -> bool:
        """HMAC-SHA256 over the raw request body with the webhook secret."""
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
        return _hmac_matches(self.webhook_secret, body, signature)


_gateway: Optional[RazorpayGateway] = None


def get_gateway() -> RazorpayGateway:
    """Process-wide gateway client (FastAPI dependency)."""
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway()
    return _gateway
