"""
Payment Logger — Append-only, sanitized audit trail of payment attempts.

Rules:
- INSERT only. PaymentLog rows are never updated or deleted here.
- Best-effort. ``log_event`` swallows its own failures so logging can never
  abort the payment flow that called it.
- Payloads are sanitized: sensitive keys dropped, strings capped at 500 chars,
  lists capped at 10 items, nesting capped at 2 levels.
- correlation_id = gateway order id, grouping all events of one attempt.
"""
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from storefront.database import SessionLocal
from storefront.models.payment_log import PaymentLog

logger = logging.getLogger("storefront.payments.audit")

SENSITIVE_KEY_PATTERN = re.compile(r"secret|key|password|token|signature|cvv|card|pan|otp", re.IGNORECASE)
MAX_DEPTH = 2
MAX_STRING = 500
MAX_ITEMS = 10
TRUNCATED = "[truncated]"
ELLIPSIS = "…"


def sanitize_payload(payload: Any, depth: int = 0) -> Any:
    """Strip sensitive keys and size-control a payload before storing."""
    if depth > MAX_DEPTH:
        return TRUNCATED
    if payload is None:
        return None
    if isinstance(payload, str):
        return payload[:MAX_STRING] + ELLIPSIS if len(payload) > MAX_STRING else payload
    if isinstance(payload, (bool, int, float)):
        return payload
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item, depth + 1) for item in list(payload)[:MAX_ITEMS]]
    if isinstance(payload, dict):
        return {
            str(k): sanitize_payload(v, depth + 1)
            for k, v in payload.items()
            if not SENSITIVE_KEY_PATTERN.search(str(k))
        }
    return sanitize_payload(str(payload), depth)


def client_info(request) -> Dict[str, Optional[str]]:
    """IP (proxy-aware) and user agent from a Starlette request."""
    if request is None:
        return {"ip": None, "user_agent": None}
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    user_agent = request.headers.get("user-agent")
    return {"ip": ip, "user_agent": user_agent[:256] if user_agent else None}


class PaymentLogger:
    """Writes PaymentLog rows; one row per state transition of a payment attempt."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def build(
        event_type: str,
        status: str,
        correlation_id: Optional[str] = None,
        order_id: Optional[int] = None,
        pending_payment_id: Optional[int] = None,
        gateway_order_id: Optional[str] = None,
        gateway_payment_id: Optional[str] = None,
        amount: Optional[float] = None,
        message: Optional[str] = None,
        raw_payload: Optional[Dict] = None,
        request=None,
    ) -> PaymentLog:
        info = client_info(request)
        return PaymentLog(
            correlation_id=correlation_id or gateway_order_id,
            event_type=event_type,
            status=status,
            order_id=order_id,
            pending_payment_id=pending_payment_id,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            amount=amount,
            message=message,
            raw_payload=sanitize_payload(raw_payload) if raw_payload is not None else None,
            ip_address=info["ip"],
            user_agent=info["user_agent"],
            created_at=datetime.utcnow(),
        )

    def log_event(self, **params) -> None:
        """Insert one row in its own session. Never raises."""
        db = None
        try:
            entry = self.build(**params)
            db = self.session_factory()
            db.add(entry)
            db.commit()
        except Exception:
            logger.exception(
                "PaymentLog write failed (event=%s correlation=%s)",
                params.get("event_type"), params.get("correlation_id") or params.get("gateway_order_id"),
            )
            if db is not None:
                db.rollback()
        finally:
            if db is not None:
                db.close()

    def record(self, db: Session, **params) -> PaymentLog:
        """Add a row to the caller's unit of work; it commits or rolls back with it."""
        entry = self.build(**params)
        db.add(entry)
        return entry

    @staticmethod
    def get_trail(db: Session, correlation_id: str) -> list[PaymentLog]:
        """All events of one payment attempt, oldest first."""
        return (
            db.query(PaymentLog)
            .filter(PaymentLog.correlation_id == correlation_id)
            .order_by(PaymentLog.id.asc())
            .all()
        )


def get_payment_logger() -> PaymentLogger:
    """FastAPI dependency."""
    return PaymentLogger()
