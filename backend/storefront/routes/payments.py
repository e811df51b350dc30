"""
Payment Routes — Razorpay checkout: order creation, client verification, cancel.
"""
import logging
import secrets
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.database import get_db
from storefront.models.pending_payment import PendingPayment
from storefront.schemas.schemas import (
    CreatePaymentOrderRequest, CreatePaymentOrderResponse,
    VerifyPaymentRequest, VerifyPaymentResponse,
    CancelPaymentRequest, CancelPaymentResponse,
)
from storefront.services.delivery_pricing import check_pincode
from storefront.services.finalization_engine import PaymentFinalizer, get_finalizer
from storefront.services.gateway_client import RazorpayGateway, get_gateway
from storefront.services.order_service import build_snapshot, price_order
from storefront.services.payment_logger import PaymentLogger, get_payment_logger
from storefront.services.settings_service import SettingsService
from storefront.utils.auth import CurrentUser, get_current_user, rate_limit_user
from storefront.utils.errors import GatewayError, GatewayTimeoutError, ValidationError
from storefront.utils.rate_limiter import rate_limit

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/create-order", response_model=CreatePaymentOrderResponse)
def create_payment_order(
    payload: CreatePaymentOrderRequest,
    request: Request,
    user: CurrentUser = Depends(rate_limit_user("payment-create")),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    audit: PaymentLogger = Depends(get_payment_logger),
):
    """Price the cart server-side, open a gateway order and stage a PendingPayment."""
    shipping = payload.shipping
    available, _ = check_pincode(db, shipping.pincode)
    if not available:
        raise ValidationError("Delivery not available in this area", error_code="PINCODE_NOT_SERVICEABLE")

    items = build_snapshot(db, payload.items)
    totals = price_order(db, items, SettingsService.get_delivery(db), payload.coupon_code, user_id=user.user_id)
    if payload.coupon_code and not totals.coupon_code:
        raise ValidationError(totals.coupon_message or "Invalid coupon", error_code="COUPON_INVALID")
    if totals.total_amount < 1:
        raise ValidationError("Order total must be at least ₹1 for online payment")

    receipt_id = f"rcpt_{secrets.token_hex(10)}"
    try:
        gateway_order = gateway.create_order(
            totals.total_amount, receipt_id, notes={"user_id": user.user_id, "receipt": receipt_id},
        )
    except GatewayTimeoutError:
        audit.log_event(event_type="TIMEOUT", status="FAILED", amount=totals.total_amount,
                        message=f"Gateway order creation timed out ({receipt_id})", request=request)
        raise
    except GatewayError as exc:
        audit.log_event(event_type="FAILED", status="FAILED", amount=totals.total_amount,
                        message=f"Gateway order creation failed ({receipt_id}): {exc.detail}", request=request)
        raise

    now = datetime.utcnow()
    pending = PendingPayment(
        gateway_order_id=gateway_order.id,
        receipt_id=receipt_id,
        user_id=user.user_id,
        status="PENDING",
        amount=totals.total_amount,
        currency=gateway_order.currency,
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        shipping_cost=totals.shipping_cost,
        coupon_code=totals.coupon_code,
        cart_snapshot=[item.to_dict() for item in items],
        payment_method="RAZORPAY",
        expires_at=now + timedelta(minutes=settings.PENDING_PAYMENT_TTL_MINUTES),
        **shipping.model_dump(),
    )
    try:
        db.add(pending)
        db.flush()
        audit.record(
            db, event_type="CREATED", status="INFO", gateway_order_id=gateway_order.id,
            pending_payment_id=pending.id, amount=totals.total_amount,
            message=f"Checkout started for {len(items)} item(s)",
            raw_payload={"receipt": receipt_id, "coupon": totals.coupon_code,
                         "subtotal": totals.subtotal, "shipping": totals.shipping_cost},
            request=request,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Gateway order %s created for user %s (₹%s)", gateway_order.id, user.user_id, totals.total_amount)
    return CreatePaymentOrderResponse(
        gateway_order_id=gateway_order.id,
        amount=gateway_order.amount,
        currency=gateway_order.currency,
        key_id=gateway.key_id,
        receipt_id=receipt_id,
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        shipping_cost=totals.shipping_cost,
        total_amount=totals.total_amount,
        prefill={"name": shipping.customer_name, "email": shipping.email, "contact": shipping.mobile},
    )


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    request: Request,
    user: CurrentUser = Depends(rate_limit_user("payment-verify")),
    db: Session = Depends(get_db),
    finalizer: PaymentFinalizer = Depends(get_finalizer),
):
    """Client callback after the checkout modal succeeds."""
    result = finalizer.finalize_from_callback(
        db, payload.razorpay_order_id, payload.razorpay_payment_id,
        payload.razorpay_signature, user.user_id, request,
    )
    if not result.success:
        raise ValidationError(result.error or "Payment could not be completed",
                              error_code=result.error_code or "PAYMENT_FAILED")
    return VerifyPaymentResponse(
        success=True,
        order_number=result.order_number,
        already_processed=result.already_processed,
        message="Order already confirmed" if result.already_processed else "Payment successful, order placed",
    )


@router.post("/cancel", response_model=CancelPaymentResponse)
def cancel_payment(
    payload: CancelPaymentRequest,
    request: Request,
    _throttle: bool = Depends(rate_limit("payment-cancel")),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    finalizer: PaymentFinalizer = Depends(get_finalizer),
):
    """User closed the checkout modal without paying."""
    return finalizer.cancel(db, payload.gateway_order_id, user.user_id, request)
