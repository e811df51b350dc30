"""
Reconciliation Service — resolves payment attempts that never received a terminal signal,
and purges stale staging rows.

Sweep rules for a PENDING record older than the grace period:
- gateway shows a captured/authorized payment → finalize (source ``reconcile``)
- no capture and past ``expires_at``           → FAILED (EXPIRED)
- gateway timeout / error                      → left PENDING, retried next sweep
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.models.order import Order
from storefront.models.payment_log import PaymentLog
from storefront.models.pending_payment import PendingPayment
from storefront.services.finalization_engine import PaymentFinalizer
from storefront.utils.errors import ConflictError, GatewayError, GatewayTimeoutError, StorefrontError
from storefront.utils.logger import get_payments_logger

logger = get_payments_logger("reconcile")


@dataclass
class SweepReport:
    checked: int = 0
    finalized: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    needs_repair: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "finalized": self.finalized,
            "expired": self.expired,
            "failed": self.failed,
            "deferred": self.deferred,
            "needs_repair": self.needs_repair,
        }


class ReconciliationService:

    def __init__(self, finalizer: PaymentFinalizer, session_factory: Callable[[], Session]):
        self.finalizer = finalizer
        self.session_factory = session_factory
        self.settings = get_settings()

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=self.settings.RECONCILE_GRACE_MINUTES)
        report = SweepReport()

        db = self.session_factory()
        try:
            stuck = (
                db.query(PendingPayment.gateway_order_id)
                .filter(PendingPayment.status == "PENDING", PendingPayment.created_at <= cutoff)
                .order_by(PendingPayment.created_at.asc())
                .all()
            )
            for (gateway_order_id,) in stuck:
                report.checked += 1
                try:
                    self._resolve(db, gateway_order_id, now, report)
                except Exception:
                    # Left PENDING; the next sweep picks it up again
                    db.rollback()
                    logger.exception("Reconciliation of %s failed; retrying next sweep", gateway_order_id)
                    report.deferred.append(gateway_order_id)

            report.needs_repair = self._orphaned_successes(db)
        finally:
            db.close()

        logger.info(
            "Reconciliation sweep: checked=%d finalized=%d expired=%d failed=%d deferred=%d repair=%d",
            report.checked, len(report.finalized), len(report.expired), len(report.failed),
            len(report.deferred), len(report.needs_repair),
        )
        return report

    def _resolve(self, db: Session, gateway_order_id: str, now: datetime, report: SweepReport) -> None:
        pending = db.query(PendingPayment).filter(PendingPayment.gateway_order_id == gateway_order_id).first()
        if pending is None or pending.status != "PENDING":
            return

        try:
            payments = self.finalizer.gateway.fetch_order_payments(gateway_order_id)
        except GatewayTimeoutError as exc:
            self.finalizer.audit.log_event(
                event_type="TIMEOUT", status="FAILED", gateway_order_id=gateway_order_id,
                pending_payment_id=pending.id, message=f"Reconciliation lookup timed out: {exc.detail}",
            )
            report.deferred.append(gateway_order_id)
            return
        except GatewayError as exc:
            self.finalizer.audit.log_event(
                event_type="FAILED", status="FAILED", gateway_order_id=gateway_order_id,
                pending_payment_id=pending.id, message=f"Reconciliation lookup failed: {exc.detail}",
            )
            report.deferred.append(gateway_order_id)
            return

        captured = next((p for p in payments if p.is_captured), None)
        if captured is not None:
            try:
                result = self.finalizer.finalize_from_reconciliation(db, pending, captured)
            except ConflictError as exc:
                logger.warning("Reconciliation of %s deferred: %s", gateway_order_id, exc.detail)
                report.deferred.append(gateway_order_id)
                return
            except StorefrontError as exc:
                logger.warning("Reconciliation of %s rejected: %s", gateway_order_id, exc.detail)
                report.failed.append(gateway_order_id)
                return
            if result.success:
                report.finalized.append(gateway_order_id)
            else:
                report.failed.append(gateway_order_id)
            return

        if pending.expires_at and pending.expires_at <= now:
            if self.finalizer.mark_failed(db, gateway_order_id, "EXPIRED", "No captured payment before expiry",
                                          event_type="EXPIRED"):
                report.expired.append(gateway_order_id)
            return

        report.deferred.append(gateway_order_id)

    def _orphaned_successes(self, db: Session) -> List[str]:
        """SUCCESS attempts with no Order; these need a manual look."""
        rows = (
            db.query(PendingPayment.id, PendingPayment.gateway_order_id)
            .outerjoin(Order, Order.gateway_order_id == PendingPayment.gateway_order_id)
            .filter(PendingPayment.status == "SUCCESS", Order.id.is_(None))
            .all()
        )
        for pending_id, gateway_order_id in rows:
            logger.error("Pending payment %s is SUCCESS without an order; needs repair", gateway_order_id)
            self.finalizer.audit.log_event(
                event_type="FAILED", status="FAILED", gateway_order_id=gateway_order_id,
                pending_payment_id=pending_id, message="SUCCESS without order; manual repair required",
            )
        return [gateway_order_id for _, gateway_order_id in rows]

    def cleanup(self, now: Optional[datetime] = None, dry_run: bool = False) -> dict:
        """Retention purge. The only place PaymentLog rows are ever deleted."""
        now = now or datetime.utcnow()
        pending_cutoff = now - timedelta(days=self.settings.PENDING_RETENTION_DAYS)
        failed_cutoff = now - timedelta(days=self.settings.FAILED_RETENTION_DAYS)
        log_cutoff = now - timedelta(days=self.settings.PAYMENT_LOG_RETENTION_DAYS)

        db = self.session_factory()
        try:
            queries = {
                "pending_deleted": db.query(PendingPayment).filter(
                    PendingPayment.status == "PENDING", PendingPayment.created_at < pending_cutoff),
                "failed_deleted": db.query(PendingPayment).filter(
                    PendingPayment.status == "FAILED", PendingPayment.created_at < failed_cutoff),
                "logs_deleted": db.query(PaymentLog).filter(PaymentLog.created_at < log_cutoff),
            }
            if dry_run:
                counts = {name: query.count() for name, query in queries.items()}
            else:
                counts = {name: query.delete(synchronize_session=False) for name, query in queries.items()}
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        counts["dry_run"] = dry_run
        logger.info("Payment cleanup%s: %s", " (dry run)" if dry_run else "", counts)
        return counts
