"""
Order Models — durable record of a completed purchase.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from storefront.database import Base


ORDER_STATUSES = ("PENDING", "PAID", "PACKING", "SHIPPED", "DELIVERED", "CANCELLED")
PAYMENT_METHODS = ("RAZORPAY", "COD", "WHATSAPP")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    order_number = Column(String(40), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    # Unique: the storage-level arbiter between racing finalizations of one gateway order
    gateway_order_id = Column(String(64), unique=True, nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True)

    # Shipping
    customer_name = Column(String(128), nullable=False)
    mobile = Column(String(20), nullable=False)
    email = Column(String(128))
    address = Column(String(512), nullable=False)
    city = Column(String(64), nullable=False)
    state = Column(String(64), nullable=False)
    pincode = Column(String(6), nullable=False)
    notes = Column(Text)

    # Pricing (INR)
    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, default=0.0)
    shipping_cost = Column(Float, default=0.0)
    total_amount = Column(Float, nullable=False)
    coupon_code = Column(String(30))

    order_status = Column(String(16), default="PENDING", index=True)  # See ORDER_STATUSES
    payment_method = Column(String(16), default="RAZORPAY")          # See PAYMENT_METHODS

    tracking_number = Column(String(64))
    courier_name = Column(String(64))
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")


class OrderItem(Base):
    """Denormalized line: name/price/image as they were at purchase time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    product_id = Column(Integer, nullable=True)
    combo_id = Column(Integer, nullable=True)
    hamper_id = Column(Integer, nullable=True)

    name = Column(String(200), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    image = Column(String(512))
    selected_size = Column(String(32))
    selected_color = Column(String(32))
    custom_message = Column(String(256))

    order = relationship("Order", back_populates="items")
