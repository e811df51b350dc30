"""
Admin Routes — order back-office, payment audit trail and store configuration.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from storefront.database import get_db, SessionLocal
from storefront.models.order import Order
from storefront.models.payment_log import PaymentLog
from storefront.models.pending_payment import PendingPayment
from storefront.schemas.schemas import (
    OrderOut, OrderListResponse, OrderStatusUpdateRequest,
    PaymentLogListResponse, PaymentTrailResponse,
    DeliverySettingsOut, DeliverySettingsUpdate,
    NotificationSettingsOut, NotificationSettingsUpdate,
    ReconcileResponse, CleanupResponse, AdminDashboardResponse,
)
from storefront.services.finalization_engine import PaymentFinalizer, get_finalizer
from storefront.services.order_service import OrderService
from storefront.services.payment_logger import PaymentLogger
from storefront.services.query_filters import OrderFilter, PaymentLogFilter
from storefront.services.reconciliation import ReconciliationService
from storefront.services.settings_service import SettingsService
from storefront.utils.auth import require_admin
from storefront.utils.errors import NotFoundError

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_admin)])

MAX_PAGE_SIZE = 100


def get_reconciler(finalizer: PaymentFinalizer = Depends(get_finalizer)) -> ReconciliationService:
    return ReconciliationService(finalizer, SessionLocal)


# ──────────────── Dashboard ────────────────

@router.get("/dashboard", response_model=AdminDashboardResponse)
def get_dashboard(db: Session = Depends(get_db)):
    """Order and payment-attempt counts for the back-office home page."""
    by_status = db.query(Order.order_status, func.count(Order.id)).group_by(Order.order_status).all()
    revenue = db.query(func.coalesce(func.sum(Order.total_amount), 0.0)).filter(
        Order.order_status.in_(["PAID", "PACKING", "SHIPPED", "DELIVERED"])
    ).scalar()
    pending = db.query(PendingPayment.status, func.count(PendingPayment.id)).group_by(PendingPayment.status).all()

    status_counts = {s: c for s, c in by_status}
    return AdminDashboardResponse(
        total_orders=sum(status_counts.values()),
        orders_by_status=status_counts,
        paid_revenue=round(float(revenue or 0), 2),
        pending_payments={s: c for s, c in pending},
    )


# ──────────────── Orders ────────────────

@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    status: Optional[str] = Query(None),
    payment_method: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    filters = OrderFilter(status=status, payment_method=payment_method, search=search,
                          date_from=date_from, date_to=date_to)
    query = filters.apply(db.query(Order))
    total = query.count()
    orders = (
        query.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return OrderListResponse(orders=orders, total=total, page=page, limit=limit)


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, db: Session = Depends(get_db)):
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


@router.put("/orders/{order_id}", response_model=OrderOut)
def update_order(order_id: int, payload: OrderStatusUpdateRequest, db: Session = Depends(get_db)):
    """Status transition and/or tracking details. Cancelling restores stock and coupon usage."""
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return OrderService.update_status(
        db, order, payload.order_status,
        tracking_number=payload.tracking_number,
        courier_name=payload.courier_name,
        notes=payload.notes,
    )


# ──────────────── Payment Logs (read-only) ────────────────

@router.get("/payment-logs", response_model=PaymentLogListResponse)
def list_payment_logs(
    correlation_id: Optional[str] = Query(None),
    gateway_order_id: Optional[str] = Query(None),
    order_id: Optional[int] = Query(None),
    event_type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    filters = PaymentLogFilter(
        correlation_id=correlation_id, gateway_order_id=gateway_order_id, order_id=order_id,
        event_type=event_type, status=status, date_from=date_from, date_to=date_to,
    )
    query = filters.apply(db.query(PaymentLog))
    total = query.count()
    logs = (
        query.order_by(PaymentLog.created_at.desc(), PaymentLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return PaymentLogListResponse(logs=logs, total=total, page=page, limit=limit)


@router.get("/payment-logs/{correlation_id}", response_model=PaymentTrailResponse)
def get_payment_trail(correlation_id: str, db: Session = Depends(get_db)):
    """Every event of one payment attempt, oldest first."""
    events = PaymentLogger.get_trail(db, correlation_id)
    if not events:
        raise NotFoundError("No payment events found for this id")
    return PaymentTrailResponse(correlation_id=correlation_id, events=events)


@router.api_route("/payment-logs", methods=["POST", "PUT", "PATCH", "DELETE"], include_in_schema=False)
@router.api_route("/payment-logs/{correlation_id}", methods=["POST", "PUT", "PATCH", "DELETE"],
                  include_in_schema=False)
def reject_payment_log_writes():
    """The audit trail is append-only from the payment flow; nothing here may change it."""
    return JSONResponse(
        status_code=405,
        content={"detail": "Payment logs are read-only", "error_code": "METHOD_NOT_ALLOWED"},
        headers={"Allow": "GET"},
    )


# ──────────────── Reconciliation ────────────────

@router.post("/payments/reconcile", response_model=ReconcileResponse)
def reconcile_payments(reconciler: ReconciliationService = Depends(get_reconciler)):
    return reconciler.sweep().as_dict()


@router.post("/cleanup/payments", response_model=CleanupResponse)
def cleanup_payments(
    dry_run: bool = Query(False),
    reconciler: ReconciliationService = Depends(get_reconciler),
):
    return reconciler.cleanup(dry_run=dry_run)


# ──────────────── Store Settings ────────────────

@router.get("/delivery-config", response_model=DeliverySettingsOut)
def get_delivery_config(db: Session = Depends(get_db)):
    return SettingsService.get_delivery(db)


@router.put("/delivery-config", response_model=DeliverySettingsOut)
def update_delivery_config(payload: DeliverySettingsUpdate, db: Session = Depends(get_db)):
    return SettingsService.upsert_delivery(db, **payload.model_dump(exclude_none=True))


@router.get("/notification-settings", response_model=NotificationSettingsOut)
def get_notification_settings(db: Session = Depends(get_db)):
    return SettingsService.get_notification(db)


@router.put("/notification-settings", response_model=NotificationSettingsOut)
def update_notification_settings(payload: NotificationSettingsUpdate, db: Session = Depends(get_db)):
    return SettingsService.upsert_notification(db, **payload.model_dump(exclude_none=True))
