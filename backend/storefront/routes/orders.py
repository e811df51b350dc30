"""
Order Routes — cash-on-delivery / WhatsApp orders and the shopper's order history.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, selectinload

from storefront.database import get_db
from storefront.models.order import Order
from storefront.schemas.schemas import PlaceOrderRequest, OrderOut, OrderListResponse
from storefront.services.delivery_pricing import check_pincode
from storefront.services.notification_service import NotificationService, get_notifier
from storefront.services.order_service import OrderService
from storefront.utils.auth import CurrentUser, get_current_user, rate_limit_user
from storefront.utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["Orders"])


@router.post("", response_model=OrderOut, status_code=201)
def place_order(
    payload: PlaceOrderRequest,
    user: CurrentUser = Depends(rate_limit_user("orders-create")),
    db: Session = Depends(get_db),
    notifier: NotificationService = Depends(get_notifier),
):
    """Place a COD or WhatsApp order; payment is collected outside the gateway."""
    available, _ = check_pincode(db, payload.shipping.pincode)
    if not available:
        raise ValidationError("Delivery not available in this area", error_code="PINCODE_NOT_SERVICEABLE")

    order, _ = OrderService.place_offline_order(
        db, user.user_id, payload.shipping.model_dump(), payload.items,
        payload.coupon_code, payload.payment_method,
    )
    logger.info("%s order %s placed by user %s", order.payment_method, order.order_number, user.user_id)

    try:
        notifier.order_placed(order.order_number)
    except Exception:
        logger.exception("Could not dispatch notifications for %s", order.order_number)
    return order


@router.get("", response_model=OrderListResponse)
def list_my_orders(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Order).filter(Order.user_id == user.user_id)
    if status:
        query = query.filter(Order.order_status == status)
    total = query.count()
    orders = (
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return OrderListResponse(orders=orders, total=total, page=page, limit=limit)


@router.get("/{order_number}", response_model=OrderOut)
def get_order(
    order_number: str,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Owner or admin only; anyone else gets a 404."""
    order = db.query(Order).filter(Order.order_number == order_number).first()
    if not order or (order.user_id != user.user_id and not user.is_admin):
        raise NotFoundError("Order not found")
    return order
