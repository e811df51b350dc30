"""
Coupon Engine — validation and discount pricing for coupon codes.

Validation only reads coupon state. Usage counters move in exactly two
places: ``increment_usage`` when an order is committed and ``release_usage``
when an admin cancels it, so abandoned or failed payments never consume a use.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from storefront.models.coupon import Coupon
from storefront.models.order import Order
from storefront.models.pending_payment import PendingPayment
from storefront.utils.errors import ValidationError

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{1,30}$")


@dataclass
class CouponValidation:
    valid: bool
    discount_amount: float
    message: str
    code: Optional[str] = None
    coupon_id: Optional[int] = None


def normalize_code(code: Optional[str]) -> Optional[str]:
    """Trim + uppercase; None when the code cannot be a coupon code."""
    if not code or not isinstance(code, str):
        return None
    cleaned = code.strip().upper()
    return cleaned if CODE_PATTERN.match(cleaned) else None


def calculate_discount(discount_type: str, discount_value: float, subtotal: float,
                       max_discount_amount: Optional[float] = None) -> float:
    """Never negative, never above the subtotal."""
    if discount_type == "PERCENTAGE":
        discount = subtotal * discount_value / 100
        if max_discount_amount is not None and max_discount_amount > 0:
            discount = min(discount, max_discount_amount)
    else:
        discount = discount_value
    discount = max(0.0, min(discount, subtotal))
    return round(discount, 2)


def _rejected(message: str, code: Optional[str] = None) -> CouponValidation:
    return CouponValidation(valid=False, discount_amount=0.0, message=message, code=code)


class CouponEngine:

    @staticmethod
    def validate(
        db: Session,
        code: Optional[str],
        subtotal: float,
        user_id: Optional[str] = None,
        skip_date_validation: bool = False,
        exclude_pending_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> CouponValidation:
        """Check existence/window, usage caps, minimum subtotal; then price the discount.

        ``skip_date_validation`` honors a coupon that was valid when the payment
        was initiated. ``exclude_pending_id`` keeps the attempt being finalized
        from counting against its own per-user limit.
        """
        normalized = normalize_code(code)
        if not normalized:
            return _rejected("Invalid coupon code format")

        coupon = db.query(Coupon).filter(Coupon.code == normalized).first()
        if coupon is None:
            return _rejected("Coupon not found", normalized)
        if not coupon.is_active:
            return _rejected("This coupon is no longer active", normalized)

        if not skip_date_validation:
            now = now or datetime.utcnow()
            if coupon.start_date and now < coupon.start_date:
                return _rejected("This coupon is not yet active", normalized)
            if coupon.expiry_date and now > coupon.expiry_date:
                return _rejected("This coupon has expired", normalized)

        if user_id and coupon.usage_per_user and coupon.usage_per_user > 0:
            used = (
                db.query(Order)
                .filter(
                    Order.user_id == user_id,
                    Order.coupon_code == normalized,
                    Order.order_status != "CANCELLED",
                )
                .count()
            )
            # In-flight attempts count too, so parallel checkouts can't bypass the cap
            in_flight = db.query(PendingPayment).filter(
                PendingPayment.user_id == user_id,
                PendingPayment.coupon_code == normalized,
                PendingPayment.status == "PENDING",
            )
            if exclude_pending_id is not None:
                in_flight = in_flight.filter(PendingPayment.id != exclude_pending_id)
            if used + in_flight.count() >= coupon.usage_per_user:
                return _rejected("You have already used this coupon", normalized)

        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            return _rejected("This coupon has reached its usage limit", normalized)

        if subtotal < (coupon.min_order_value or 0):
            return _rejected(f"Minimum order value of ₹{coupon.min_order_value:g} required", normalized)

        discount = calculate_discount(coupon.discount_type, coupon.discount_value, subtotal, coupon.max_discount_amount)
        return CouponValidation(
            valid=True,
            discount_amount=discount,
            message=f"Coupon applied! You save ₹{discount:g}",
            code=normalized,
            coupon_id=coupon.id,
        )

    @staticmethod
    def increment_usage(db: Session, code: str) -> None:
        """Conditional UPDATE inside the caller's transaction; fails if the global cap was reached."""
        result = db.execute(
            update(Coupon)
            .where(
                Coupon.code == code,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0 and db.query(Coupon.id).filter(Coupon.code == code).first() is not None:
            raise ValidationError("Coupon usage limit exceeded", error_code="COUPON_EXHAUSTED")

    @staticmethod
    def release_usage(db: Session, code: str) -> None:
        db.execute(
            update(Coupon)
            .where(Coupon.code == code, Coupon.used_count > 0)
            .values(used_count=Coupon.used_count - 1)
            .execution_options(synchronize_session=False)
        )
