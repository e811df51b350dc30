"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Optional, Dict, List, Any
from pydantic import BaseModel, Field, model_validator


# ──────────────── Checkout ────────────────

class CartLine(BaseModel):
    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    hamper_id: Optional[int] = None
    size: Optional[str] = Field(None, max_length=32)
    quantity: int = Field(..., ge=1, le=50)
    selected_color: Optional[str] = Field(None, max_length=32)
    custom_message: Optional[str] = Field(None, max_length=256)

    @model_validator(mode="after")
    def exactly_one_item(self):
        ids = [i for i in (self.product_id, self.combo_id, self.hamper_id) if i is not None]
        if len(ids) != 1:
            raise ValueError("Each cart line needs exactly one of product_id, combo_id, hamper_id")
        return self


class ShippingDetails(BaseModel):
    customer_name: str = Field(..., min_length=2, max_length=128)
    mobile: str = Field(..., pattern=r"^[6-9]\d{9}$", description="10-digit Indian mobile number")
    email: Optional[str] = Field(None, max_length=128)
    address: str = Field(..., min_length=5, max_length=512)
    city: str = Field(..., min_length=2, max_length=64)
    state: str = Field(..., min_length=2, max_length=64)
    pincode: str = Field(..., pattern=r"^\d{6}$")
    notes: Optional[str] = Field(None, max_length=1000)


class CreatePaymentOrderRequest(BaseModel):
    shipping: ShippingDetails
    items: List[CartLine] = Field(..., min_length=1, max_length=50)
    coupon_code: Optional[str] = None


class CreatePaymentOrderResponse(BaseModel):
    gateway_order_id: str
    amount: int                 # paise
    currency: str
    key_id: str
    receipt_id: str
    subtotal: float
    discount_amount: float
    shipping_cost: float
    total_amount: float
    prefill: Dict[str, Optional[str]] = {}


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1, max_length=64)
    razorpay_payment_id: str = Field(..., min_length=1, max_length=64)
    razorpay_signature: str = Field(..., min_length=1, max_length=256)


class VerifyPaymentResponse(BaseModel):
    success: bool
    order_number: Optional[str] = None
    already_processed: bool = False
    message: str = ""


class CancelPaymentRequest(BaseModel):
    gateway_order_id: str = Field(..., min_length=1, max_length=64)


class CancelPaymentResponse(BaseModel):
    ok: bool
    skipped: bool


class WebhookResponse(BaseModel):
    status: str  # ok | ignored


# ──────────────── Orders ────────────────

class PlaceOrderRequest(BaseModel):
    shipping: ShippingDetails
    items: List[CartLine] = Field(..., min_length=1, max_length=50)
    coupon_code: Optional[str] = None
    payment_method: str = Field(..., pattern=r"^(COD|WHATSAPP)$")


class OrderItemOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    hamper_id: Optional[int] = None
    name: str
    price: float
    quantity: int
    image: Optional[str] = None
    selected_size: Optional[str] = None
    selected_color: Optional[str] = None
    custom_message: Optional[str] = None

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: str
    customer_name: str
    mobile: str
    email: Optional[str] = None
    address: str
    city: str
    state: str
    pincode: str
    notes: Optional[str] = None
    subtotal: float
    discount_amount: float = 0.0
    shipping_cost: float = 0.0
    total_amount: float
    coupon_code: Optional[str] = None
    order_status: str
    payment_method: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    tracking_number: Optional[str] = None
    courier_name: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    items: List[OrderItemOut] = []

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    page: int
    limit: int


class OrderStatusUpdateRequest(BaseModel):
    order_status: Optional[str] = Field(None, pattern=r"^(PENDING|PAID|PACKING|SHIPPED|DELIVERED|CANCELLED)$")
    tracking_number: Optional[str] = Field(None, max_length=64)
    courier_name: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = Field(None, max_length=1000)


# ──────────────── Coupons & Delivery ────────────────

class CouponValidateRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1, max_length=64)
    cart_subtotal: float = Field(..., ge=0)


class CouponValidateResponse(BaseModel):
    valid: bool
    discount_amount: float
    delivery_charge: float
    final_total: float
    message: str
    code: Optional[str] = None


class PincodeCheckResponse(BaseModel):
    pincode: str
    available: bool
    city: Optional[str] = None
    state: Optional[str] = None
    message: str = ""


class DeliverySettingsOut(BaseModel):
    pan_india_enabled: bool
    free_delivery_enabled: bool
    free_delivery_min_amount: float
    flat_delivery_charge: float
    delivery_charge_type: str

    class Config:
        from_attributes = True


class DeliverySettingsUpdate(BaseModel):
    pan_india_enabled: Optional[bool] = None
    free_delivery_enabled: Optional[bool] = None
    free_delivery_min_amount: Optional[float] = Field(None, ge=0)
    flat_delivery_charge: Optional[float] = Field(None, ge=0)
    delivery_charge_type: Optional[str] = Field(None, pattern=r"^(FLAT|CONDITIONAL)$")


class NotificationSettingsOut(BaseModel):
    admin_email: Optional[str] = None
    order_alerts_enabled: bool
    low_stock_alerts_enabled: bool
    low_stock_threshold: int

    class Config:
        from_attributes = True


class NotificationSettingsUpdate(BaseModel):
    admin_email: Optional[str] = Field(None, max_length=128)
    order_alerts_enabled: Optional[bool] = None
    low_stock_alerts_enabled: Optional[bool] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0, le=10000)


# ──────────────── Admin / Audit ────────────────

class PaymentLogEntry(BaseModel):
    id: int
    correlation_id: Optional[str] = None
    event_type: str
    status: str
    order_id: Optional[int] = None
    pending_payment_id: Optional[int] = None
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    amount: Optional[float] = None
    message: Optional[str] = None
    raw_payload: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentLogListResponse(BaseModel):
    logs: List[PaymentLogEntry]
    total: int
    page: int
    limit: int


class PaymentTrailResponse(BaseModel):
    correlation_id: str
    events: List[PaymentLogEntry]


class ReconcileResponse(BaseModel):
    checked: int
    finalized: List[str]
    expired: List[str]
    failed: List[str]
    deferred: List[str]
    needs_repair: List[str]


class CleanupResponse(BaseModel):
    pending_deleted: int
    failed_deleted: int
    logs_deleted: int
    dry_run: bool


class AdminDashboardResponse(BaseModel):
    total_orders: int
    orders_by_status: Dict[str, int]
    paid_revenue: float
    pending_payments: Dict[str, int]


# ──────────────── Generic ────────────────

class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    database: str
    uptime_seconds: float


class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[str] = None
