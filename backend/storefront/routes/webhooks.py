"""
Webhook Routes — authoritative payment notifications from Razorpay.

The signature covers the raw bytes, so the body is read before any parsing.
200 acknowledges (processed or idempotent no-op); 503 asks the gateway to retry.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from storefront.database import get_db
from storefront.schemas.schemas import WebhookResponse
from storefront.services.finalization_engine import PaymentFinalizer, get_finalizer
from storefront.utils.errors import ConflictError, GatewayError
from storefront.utils.logger import get_payments_logger
from storefront.utils.rate_limiter import rate_limit

logger = get_payments_logger("webhook")

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


@router.post("/razorpay", response_model=WebhookResponse)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    _throttle: bool = Depends(rate_limit("webhook")),
    db: Session = Depends(get_db),
    finalizer: PaymentFinalizer = Depends(get_finalizer),
):
    raw_body = await request.body()
    try:
        status = await run_in_threadpool(finalizer.handle_webhook, db, raw_body, x_razorpay_signature, request)
    except (GatewayError, ConflictError, SQLAlchemyError) as exc:
        logger.error("Webhook processing deferred: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Temporary failure, please retry", "error_code": "RETRY_LATER"},
        )
    return WebhookResponse(status=status)
