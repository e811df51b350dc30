"""
Payment Finalization Engine — turns a confirmed payment into exactly one Order.

Signals for one gateway order may arrive in any order, any number of times:
    webhook   (authoritative, signed with the webhook secret)
    callback  (client redirect, verified with the payment signature)
    reconcile (sweep asking the gateway directly)
    cancel    (user closed the checkout modal)

PendingPayment.status is the idempotency gate: PENDING → SUCCESS | FAILED,
both terminal. Two finalizations that pass the gate together are settled by
the unique ``orders.gateway_order_id`` column: the loser's INSERT fails and it
re-reads state as a replay. Order + stock + coupon usage + SUCCESS + the
FINALIZED log commit as one transaction.
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.models.order import Order
from storefront.models.pending_payment import PendingPayment
from storefront.services.coupon_engine import CouponEngine
from storefront.services.gateway_client import PaymentDetails, RazorpayGateway, get_gateway, to_paise
from storefront.services.notification_service import get_notifier
from storefront.services.order_service import (
    build_order_items, decrement_stock, ensure_unique_order_number, load_snapshot,
    price_order, validate_stock,
)
from storefront.services.payment_logger import PaymentLogger, get_payment_logger
from storefront.services.settings_service import SettingsService
from storefront.utils.errors import (
    AmountMismatchError, ConflictError, NotFoundError, SignatureError, StockError, ValidationError,
)
from storefront.utils.logger import get_payments_logger

logger = get_payments_logger("finalize")

FINALIZE_EVENTS = ("payment.captured", "payment.authorized")
FAILED_EVENT = "payment.failed"


@dataclass
class FinalizationResult:
    success: bool
    order_number: Optional[str] = None
    already_processed: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


class _LostRace(Exception):
    """PendingPayment left PENDING between the gate check and our commit."""


class PaymentFinalizer:

    def __init__(self, gateway: RazorpayGateway, payment_logger: PaymentLogger, notifier=None):
        self.gateway = gateway
        self.audit = payment_logger
        self.notifier = notifier
        self.tolerance_paise = get_settings().AMOUNT_TOLERANCE_PAISE

    # ── Entry points ────────────────────────────────────────────────

    def finalize_from_callback(self, db: Session, gateway_order_id: str, payment_id: str,
                               signature: Optional[str], user_id: str, request=None) -> FinalizationResult:
        """Client redirect after the checkout modal reports success."""
        return self._finalize(db, gateway_order_id, payment_id, source="callback",
                              user_id=user_id, signature=signature, request=request)

    def handle_webhook(self, db: Session, raw_body: bytes, signature: Optional[str], request=None) -> str:
        """Verify, parse and route one webhook delivery. Returns ``ok`` or ``ignored``.

        Terminal per-attempt failures (stock, amount, signature on the payment)
        are logged and acknowledged so the gateway stops retrying. Gateway and
        database errors propagate so the endpoint can answer 503.
        """
        if not signature:
            self.audit.log_event(event_type="FAILED", status="FAILED", message="Webhook without signature header",
                                 request=request)
            raise SignatureError("Missing webhook signature")
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            self.audit.log_event(event_type="FAILED", status="FAILED", message="Webhook signature mismatch",
                                 request=request)
            raise SignatureError("Invalid webhook signature")

        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc

        event = payload.get("event")
        entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
        payment = PaymentDetails.from_entity(entity)

        self.audit.log_event(
            event_type="WEBHOOK_RECEIVED", status="INFO",
            gateway_order_id=payment.order_id, gateway_payment_id=payment.id or None,
            amount=payment.amount / 100 if payment.amount else None,
            message=f"Webhook {event}", raw_payload=payload, request=request,
        )

        if not payment.order_id or event not in FINALIZE_EVENTS + (FAILED_EVENT,):
            self.audit.log_event(
                event_type="IGNORED", status="INFO", gateway_order_id=payment.order_id,
                message=f"Unhandled webhook event {event}", request=request,
            )
            return "ignored"

        if event == FAILED_EVENT:
            reason = payment.error_description or payment.error_code or "Payment failed at gateway"
            self.mark_failed(db, payment.order_id, "GATEWAY_FAILED", reason,
                             gateway_payment_id=payment.id, request=request)
            return "ok"

        try:
            self._finalize(db, payment.order_id, payment.id, source="webhook",
                           captured_paise=payment.amount, request=request)
        except (StockError, AmountMismatchError, ValidationError) as exc:
            logger.warning("Webhook finalization for %s rejected: %s", payment.order_id, exc.detail)
        return "ok"

    def finalize_from_reconciliation(self, db: Session, pending: PendingPayment,
                                     payment: PaymentDetails) -> FinalizationResult:
        result = self._finalize(db, pending.gateway_order_id, payment.id, source="reconcile",
                                captured_paise=payment.amount)
        if result.success and not result.already_processed:
            self.audit.log_event(
                event_type="RECONCILED", status="SUCCESS", gateway_order_id=pending.gateway_order_id,
                gateway_payment_id=payment.id, pending_payment_id=pending.id,
                message=f"Order {result.order_number} recovered by reconciliation sweep",
            )
        return result

    def cancel(self, db: Session, gateway_order_id: str, user_id: str, request=None) -> dict:
        """User closed the modal. Only a PENDING attempt moves; anything terminal is ``skipped``."""
        pending = self._load_pending(db, gateway_order_id)
        if pending is None:
            return {"ok": True, "skipped": True}
        if pending.user_id != user_id:
            raise NotFoundError("Payment not found")

        try:
            moved = self._transition(db, pending.id, "FAILED", "CANCELED")
            if moved:
                self.audit.record(
                    db, event_type="CANCELED", status="INFO", gateway_order_id=gateway_order_id,
                    pending_payment_id=pending.id, amount=pending.amount,
                    message="Checkout closed by user", request=request,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        if moved:
            logger.info("Payment %s canceled by user %s", gateway_order_id, user_id)
        return {"ok": True, "skipped": not moved}

    def mark_failed(self, db: Session, gateway_order_id: str, reason: str, message: str,
                    gateway_payment_id: Optional[str] = None, request=None, event_type: str = "FAILED") -> bool:
        """PENDING → FAILED with its log row in one commit. Later signals are only logged."""
        pending = self._load_pending(db, gateway_order_id)
        if pending is None:
            self.audit.log_event(event_type="IGNORED", status="INFO", gateway_order_id=gateway_order_id,
                                 message=f"{reason} for unknown payment", request=request)
            return False

        try:
            moved = self._transition(db, pending.id, "FAILED", reason)
            if moved:
                self.audit.record(
                    db, event_type=event_type, status="FAILED", gateway_order_id=gateway_order_id,
                    gateway_payment_id=gateway_payment_id, pending_payment_id=pending.id,
                    amount=pending.amount, message=f"{reason}: {message}", request=request,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        if not moved:
            self.audit.log_event(
                event_type="IGNORED", status="INFO", gateway_order_id=gateway_order_id,
                pending_payment_id=pending.id, message=f"{reason} after terminal state: {message}",
                request=request,
            )
        return moved

    # ── State machine ───────────────────────────────────────────────

    @staticmethod
    def _load_pending(db: Session, gateway_order_id: str) -> Optional[PendingPayment]:
        return db.query(PendingPayment).filter(PendingPayment.gateway_order_id == gateway_order_id).first()

    @staticmethod
    def _transition(db: Session, pending_id: int, status: str, reason: Optional[str] = None) -> bool:
        """Conditional PENDING → ``status``; False when another signal got there first."""
        values = {"status": status, "updated_at": datetime.utcnow()}
        if reason:
            values["failure_reason"] = reason
        result = db.execute(
            update(PendingPayment)
            .where(PendingPayment.id == pending_id, PendingPayment.status == "PENDING")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _existing_order_number(db: Session, gateway_order_id: str) -> Optional[str]:
        row = db.query(Order.order_number).filter(Order.gateway_order_id == gateway_order_id).first()
        return row[0] if row else None

    def _replay(self, db: Session, gateway_order_id: str, source: str, request=None) -> FinalizationResult:
        """State after losing a race: report whatever the winner left.

        Raises ConflictError when there is neither an order nor a terminal failure,
        so the signal is retried instead of acknowledged.
        """
        db.expire_all()
        pending = self._load_pending(db, gateway_order_id)
        order_number = self._existing_order_number(db, gateway_order_id)
        if order_number:
            self.audit.log_event(
                event_type="IGNORED", status="INFO", gateway_order_id=gateway_order_id,
                pending_payment_id=pending.id if pending else None,
                message=f"Duplicate {source} signal; order {order_number} already exists", request=request,
            )
            return FinalizationResult(success=True, order_number=order_number, already_processed=True)
        if pending is None or pending.status != "FAILED":
            # No order and not failed: the write collided on something other than this attempt
            raise ConflictError(f"Payment {gateway_order_id} could not be finalized yet, retry later")
        reason = pending.failure_reason
        self.audit.log_event(
            event_type="IGNORED", status="INFO", gateway_order_id=gateway_order_id,
            pending_payment_id=pending.id,
            message=f"{source} success signal after terminal failure ({reason})", request=request,
        )
        return FinalizationResult(success=False, error="Payment has already failed",
                                  error_code=reason or "PAYMENT_FAILED")

    def _fail(self, db: Session, pending: PendingPayment, reason: str, message: str,
              payment_id: Optional[str], request) -> None:
        self.mark_failed(db, pending.gateway_order_id, reason, message,
                         gateway_payment_id=payment_id, request=request)

    def _finalize(
        self,
        db: Session,
        gateway_order_id: str,
        payment_id: str,
        source: str,
        user_id: Optional[str] = None,
        signature: Optional[str] = None,
        captured_paise: Optional[int] = None,
        request=None,
    ) -> FinalizationResult:
        # 1. Lookup; a missing record was already cleaned up
        pending = self._load_pending(db, gateway_order_id)
        if pending is None:
            order_number = self._existing_order_number(db, gateway_order_id)
            self.audit.log_event(
                event_type="IGNORED", status="INFO", gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id, message=f"{source}: no pending payment on record",
                request=request,
            )
            return FinalizationResult(success=True, order_number=order_number, already_processed=True)

        # 2. Ownership (user-facing callback only)
        if user_id is not None and pending.user_id != user_id:
            self.audit.log_event(
                event_type="IGNORED", status="FAILED", gateway_order_id=gateway_order_id,
                pending_payment_id=pending.id, message=f"{source}: caller does not own this payment",
                request=request,
            )
            raise NotFoundError("Payment not found")

        # 3. Idempotency gate
        if pending.status != "PENDING":
            return self._replay(db, gateway_order_id, source, request)

        # 4. Signature (callback); webhook bodies were verified by handle_webhook
        if source == "callback":
            if not self.gateway.verify_payment_signature(gateway_order_id, payment_id, signature):
                self._fail(db, pending, "SIGNATURE_INVALID", "Payment signature mismatch", payment_id, request)
                raise SignatureError("Payment verification failed")
            self.audit.log_event(
                event_type="VERIFIED_SUCCESS", status="SUCCESS", gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id, pending_payment_id=pending.id, amount=pending.amount,
                message="Payment signature verified via callback", request=request,
            )

        # Serviceability was settled when the gateway order was created; the pincode is not re-checked here
        items = load_snapshot(pending.cart_snapshot)
        if not items:
            self._fail(db, pending, "INVALID_CART", "Empty cart snapshot", payment_id, request)
            raise ValidationError("Invalid cart data")

        # 5. Stock, variant-aware
        try:
            validate_stock(db, items)
        except StockError as exc:
            self._fail(db, pending, "OUT_OF_STOCK", exc.detail, payment_id, request)
            raise

        # 6. Reprice from the snapshot and compare with what was captured
        totals = price_order(
            db, items, SettingsService.get_delivery(db), pending.coupon_code, user_id=pending.user_id,
            skip_date_validation=True, exclude_pending_id=pending.id,
        )
        expected = to_paise(totals.total_amount)
        captured = captured_paise if captured_paise is not None else to_paise(pending.amount)
        if abs(expected - captured) > self.tolerance_paise:
            message = f"Recomputed {expected} paise, captured {captured} paise"
            self._fail(db, pending, "AMOUNT_MISMATCH", message, payment_id, request)
            raise AmountMismatchError("Payment amount does not match order total")

        # 7. One transaction: Order, stock, coupon usage, SUCCESS, FINALIZED log
        try:
            order = Order(
                order_number=ensure_unique_order_number(db),
                user_id=pending.user_id,
                gateway_order_id=gateway_order_id,
                gateway_payment_id=payment_id,
                customer_name=pending.customer_name,
                mobile=pending.mobile,
                email=pending.email,
                address=pending.address,
                city=pending.city,
                state=pending.state,
                pincode=pending.pincode,
                notes=pending.notes,
                subtotal=totals.subtotal,
                discount_amount=totals.discount_amount,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total_amount,
                coupon_code=totals.coupon_code,
                order_status="PAID",
                payment_method=pending.payment_method or "RAZORPAY",
                items=build_order_items(items),
            )
            db.add(order)
            db.flush()
            decrement_stock(db, items)
            if totals.coupon_code:
                CouponEngine.increment_usage(db, totals.coupon_code)
            if not self._transition(db, pending.id, "SUCCESS"):
                raise _LostRace()
            self.audit.record(
                db, event_type="FINALIZED", status="SUCCESS", order_id=order.id,
                gateway_order_id=gateway_order_id, gateway_payment_id=payment_id,
                pending_payment_id=pending.id, amount=totals.total_amount,
                message=f"Order {order.order_number} created via {source}", request=request,
            )
            db.commit()
        except (IntegrityError, _LostRace):
            db.rollback()
            logger.info("Concurrent finalization of %s via %s; replaying", gateway_order_id, source)
            return self._replay(db, gateway_order_id, source, request)
        except StockError as exc:
            db.rollback()
            self._fail(db, pending, "OUT_OF_STOCK", exc.detail, payment_id, request)
            raise
        except ValidationError as exc:
            db.rollback()
            self._fail(db, pending, exc.error_code, exc.detail, payment_id, request)
            raise
        except Exception:
            db.rollback()
            logger.exception("Finalization of %s via %s failed", gateway_order_id, source)
            raise

        order_number = order.order_number
        logger.info("Order %s finalized from %s via %s", order_number, gateway_order_id, source)

        # 8. Notifications, fire-and-forget
        if self.notifier is not None:
            try:
                self.notifier.order_placed(order_number)
            except Exception:
                logger.exception("Could not dispatch notifications for %s", order_number)
        return FinalizationResult(success=True, order_number=order_number)


def get_finalizer() -> PaymentFinalizer:
    """FastAPI dependency wiring the engine to the process-wide collaborators."""
    return PaymentFinalizer(get_gateway(), get_payment_logger(), get_notifier())
