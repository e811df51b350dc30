from storefront.services.coupon_engine import CouponEngine
from storefront.services.finalization_engine import PaymentFinalizer
from storefront.services.notification_service import NotificationService
from storefront.services.order_service import OrderService
from storefront.services.payment_logger import PaymentLogger
from storefront.services.reconciliation import ReconciliationService
from storefront.services.settings_service import SettingsService

__all__ = [
    "CouponEngine", "PaymentFinalizer", "NotificationService", "OrderService",
    "PaymentLogger", "ReconciliationService", "SettingsService",
]
