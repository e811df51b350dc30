"""
Payment Log Model — append-only audit trail of payment attempts.
Rows are never updated; the only deletion is the retention purge.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, Text

from storefront.database import Base


EVENT_TYPES = (
    "CREATED", "WEBHOOK_RECEIVED", "VERIFIED_SUCCESS", "FINALIZED", "FAILED",
    "CANCELED", "IGNORED", "TIMEOUT", "EXPIRED", "RECONCILED",
)
LOG_STATUSES = ("INFO", "SUCCESS", "FAILED")


class PaymentLog(Base):
    __tablename__ = "payment_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    correlation_id = Column(String(64), index=True)   # = gateway order id

    event_type = Column(String(24), nullable=False, index=True)  # See EVENT_TYPES
    status = Column(String(16), nullable=False)                  # See LOG_STATUSES

    order_id = Column(Integer, nullable=True, index=True)
    pending_payment_id = Column(Integer, nullable=True)
    gateway_order_id = Column(String(64), index=True)
    gateway_payment_id = Column(String(64))

    amount = Column(Float, nullable=True)   # INR
    message = Column(Text)
    raw_payload = Column(JSON, nullable=True)  # Sanitized

    ip_address = Column(String(45))
    user_agent = Column(String(256))

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
