from storefront.models.catalog import Product, ProductVariant, Combo, GiftHamper
from storefront.models.order import Order, OrderItem
from storefront.models.pending_payment import PendingPayment
from storefront.models.payment_log import PaymentLog
from storefront.models.coupon import Coupon
from storefront.models.store_settings import DeliverySettings, NotificationSettings, ServiceablePincode

__all__ = [
    "Product", "ProductVariant", "Combo", "GiftHamper",
    "Order", "OrderItem", "PendingPayment", "PaymentLog", "Coupon",
    "DeliverySettings", "NotificationSettings", "ServiceablePincode",
]
