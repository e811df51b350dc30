"""
Coupon Model — discount codes with usage constraints.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, Boolean

from storefront.database import Base


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    code = Column(String(30), unique=True, nullable=False, index=True)  # Stored normalized (upper-case)
    description = Column(String(256))

    discount_type = Column(String(16), nullable=False)  # FLAT | PERCENTAGE
    discount_value = Column(Float, nullable=False)
    max_discount_amount = Column(Float, nullable=True)   # Ceiling for PERCENTAGE
    min_order_value = Column(Float, default=0.0)

    usage_limit = Column(Integer, nullable=True)         # Global cap; None = unlimited
    usage_per_user = Column(Integer, default=1)          # 0 = unlimited
    used_count = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True)
    start_date = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
