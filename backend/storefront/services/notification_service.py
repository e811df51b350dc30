"""
Notification Service — order confirmation, admin alerts and low-stock warnings.

Dispatch is fire-and-forget on a small thread pool: the caller never waits on
delivery and failures are only logged. There is no retry or dead-letter queue,
so a notification lost to a delivery error stays lost.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Protocol

from sqlalchemy.orm import Session, selectinload

from storefront.database import SessionLocal
from storefront.models.catalog import Product, ProductVariant, Combo, GiftHamper
from storefront.models.order import Order
from storefront.services.settings_service import SettingsService

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LoggingEmailSender:
    """Default sender: writes the message to the log instead of a mail server."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("[EMAIL] to=%s subject=%s\n%s", to, subject, body)


def _format_items(order: Order) -> str:
    lines = []
    for item in order.items:
        label = f"{item.name} ({item.selected_size})" if item.selected_size else item.name
        lines.append(f"  {item.quantity} x {label} @ ₹{item.price:g}")
    return "\n".join(lines)


class NotificationService:

    def __init__(
        self,
        sender: Optional[EmailSender] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        max_workers: int = 2,
    ):
        self.sender = sender or LoggingEmailSender()
        self.session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    # ── Dispatch ────────────────────────────────────────────────────

    def dispatch(self, job: Callable, *args) -> None:
        """Run ``job`` in the background; the returned future is not awaited."""
        future = self._executor.submit(job, *args)
        future.add_done_callback(self._report_failure)

    @staticmethod
    def _report_failure(future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Notification job failed: %s", exc, exc_info=exc)

    def order_placed(self, order_number: str) -> None:
        """Entry point used after an order commits."""
        self.dispatch(self._process_order, order_number)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # ── Jobs ────────────────────────────────────────────────────────

    def _process_order(self, order_number: str) -> None:
        db = self.session_factory()
        try:
            order = (
                db.query(Order)
                .options(selectinload(Order.items))
                .filter(Order.order_number == order_number)
                .first()
            )
            if order is None:
                logger.warning("Notification skipped: order %s not found", order_number)
                return
            settings = SettingsService.get_notification(db)

            self.send_order_confirmation(order)
            if settings.order_alerts_enabled and settings.admin_email:
                self.send_admin_new_order_alert(order, settings.admin_email)
            if settings.low_stock_alerts_enabled and settings.admin_email:
                low = self.check_low_stock(db, order, settings.low_stock_threshold)
                if low:
                    self.send_low_stock_alert(settings.admin_email, low)
        finally:
            db.close()

    def send_order_confirmation(self, order: Order) -> None:
        if not order.email:
            logger.info("Order %s has no customer email; confirmation skipped", order.order_number)
            return
        body = (
            f"Hi {order.customer_name},\n\n"
            f"Thank you for your order {order.order_number}.\n\n"
            f"{_format_items(order)}\n\n"
            f"Subtotal: ₹{order.subtotal:g}\n"
            f"Discount: ₹{order.discount_amount or 0:g}\n"
            f"Delivery: ₹{order.shipping_cost or 0:g}\n"
            f"Total:    ₹{order.total_amount:g}\n\n"
            f"Shipping to: {order.address}, {order.city}, {order.state} - {order.pincode}"
        )
        self.sender.send(order.email, f"Order Confirmed - {order.order_number}", body)

    def send_admin_new_order_alert(self, order: Order, admin_email: str) -> None:
        body = (
            f"New {order.payment_method} order {order.order_number}\n"
            f"Customer: {order.customer_name} ({order.mobile})\n"
            f"Total: ₹{order.total_amount:g}\n\n"
            f"{_format_items(order)}"
        )
        self.sender.send(admin_email, f"New Order - {order.order_number}", body)

    @staticmethod
    def check_low_stock(db: Session, order: Order, threshold: int) -> List[str]:
        """Labels of items from ``order`` now at or below ``threshold`` (size-level where applicable)."""
        low: List[str] = []
        for item in order.items:
            if item.product_id is not None:
                if item.selected_size:
                    variant = (
                        db.query(ProductVariant)
                        .filter(ProductVariant.product_id == item.product_id, ProductVariant.size == item.selected_size)
                        .first()
                    )
                    if variant is not None and variant.stock <= threshold:
                        low.append(f"{item.name} ({item.selected_size}): {variant.stock} left")
                    continue
                entity = db.get(Product, item.product_id)
            elif item.combo_id is not None:
                entity = db.get(Combo, item.combo_id)
            elif item.hamper_id is not None:
                entity = db.get(GiftHamper, item.hamper_id)
            else:
                continue
            if entity is not None and entity.stock <= threshold:
                low.append(f"{item.name}: {entity.stock} left")
        return low

    def send_low_stock_alert(self, admin_email: str, items: List[str]) -> None:
        body = "The following items are running low:\n\n" + "\n".join(f"  - {line}" for line in items)
        self.sender.send(admin_email, f"Low Stock Alert - {len(items)} item(s)", body)


_notifier: Optional[NotificationService] = None


def get_notifier() -> NotificationService:
    global _notifier
    if _notifier is None:
        _notifier = NotificationService()
    return _notifier
