"""
Pending Payment Model — staging record between "checkout started" and "order exists".
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, Text

from storefront.database import Base


class PendingPayment(Base):
    __tablename__ = "pending_payments"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    gateway_order_id = Column(String(64), unique=True, nullable=False, index=True)
    receipt_id = Column(String(40), unique=True, nullable=False)
    user_id = Column(String(64), nullable=False, index=True)

    status = Column(String(16), default="PENDING", nullable=False, index=True)
    # Transitions: PENDING → SUCCESS | FAILED only; both terminal
    failure_reason = Column(String(32))  # CANCELED | SIGNATURE_INVALID | OUT_OF_STOCK | AMOUNT_MISMATCH | EXPIRED | GATEWAY_FAILED

    # Priced at initiation (INR); amount is what the gateway order was created for
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="INR")
    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, default=0.0)
    shipping_cost = Column(Float, default=0.0)
    coupon_code = Column(String(30))

    cart_snapshot = Column(JSON, nullable=False)  # List of CartSnapshotItem dicts

    # Shipping
    customer_name = Column(String(128), nullable=False)
    mobile = Column(String(20), nullable=False)
    email = Column(String(128))
    address = Column(String(512), nullable=False)
    city = Column(String(64), nullable=False)
    state = Column(String(64), nullable=False)
    pincode = Column(String(6), nullable=False)
    notes = Column(Text)
    payment_method = Column(String(16), default="RAZORPAY")

    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
