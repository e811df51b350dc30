"""
Store Settings Models — singleton configuration rows and serviceable pincodes.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, Boolean

from storefront.database import Base

SINGLETON_ID = "default"


class DeliverySettings(Base):
    __tablename__ = "delivery_settings"

    id = Column(String(16), primary_key=True, default=SINGLETON_ID)
    pan_india_enabled = Column(Boolean, default=False)
    free_delivery_enabled = Column(Boolean, default=True)
    free_delivery_min_amount = Column(Float, default=999.0)
    flat_delivery_charge = Column(Float, default=99.0)
    delivery_charge_type = Column(String(16), default="FLAT")  # FLAT | CONDITIONAL

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class NotificationSettings(Base):
    __tablename__ = "notification_settings"

    id = Column(String(16), primary_key=True, default=SINGLETON_ID)
    admin_email = Column(String(128))
    order_alerts_enabled = Column(Boolean, default=True)
    low_stock_alerts_enabled = Column(Boolean, default=True)
    low_stock_threshold = Column(Integer, default=5)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ServiceablePincode(Base):
    __tablename__ = "serviceable_pincodes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pincode = Column(String(6), nullable=False, index=True)
    city = Column(String(64))
    state = Column(String(64))
    is_active = Column(Boolean, default=True)
