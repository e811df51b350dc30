"""
Public Storefront Routes — pincode serviceability and coupon preview.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.schemas.schemas import (
    CouponValidateRequest, CouponValidateResponse, PincodeCheckResponse,
)
from storefront.services.coupon_engine import CouponEngine
from storefront.services.delivery_pricing import check_pincode, compute_charge, final_total
from storefront.services.settings_service import SettingsService
from storefront.utils.auth import CurrentUser, get_optional_user
from storefront.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api", tags=["Storefront"])


@router.get("/pincode/check", response_model=PincodeCheckResponse)
def check_pincode_availability(
    pincode: str = Query(..., pattern=r"^\d{6}$"),
    _throttle: bool = Depends(rate_limit("pincode")),
    db: Session = Depends(get_db),
):
    available, record = check_pincode(db, pincode)
    return PincodeCheckResponse(
        pincode=pincode,
        available=available,
        city=record.city if record else None,
        state=record.state if record else None,
        message="Delivery available" if available else "Sorry, we don't deliver to this pincode yet",
    )


@router.post("/coupons/validate", response_model=CouponValidateResponse)
def validate_coupon(
    payload: CouponValidateRequest,
    _throttle: bool = Depends(rate_limit("coupon")),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Preview only: usage counters are untouched until an order commits."""
    result = CouponEngine.validate(
        db, payload.coupon_code, payload.cart_subtotal, user_id=user.user_id if user else None,
    )
    delivery = compute_charge(payload.cart_subtotal, SettingsService.get_delivery(db))
    return CouponValidateResponse(
        valid=result.valid,
        discount_amount=result.discount_amount,
        delivery_charge=delivery,
        final_total=final_total(payload.cart_subtotal, result.discount_amount, delivery),
        message=result.message,
        code=result.code,
    )
