from storefront.routes.payments import router as payments_router
from storefront.routes.webhooks import router as webhooks_router
from storefront.routes.orders import router as orders_router
from storefront.routes.storefront import router as storefront_router
from storefront.routes.admin import router as admin_router

__all__ = ["payments_router", "webhooks_router", "orders_router", "storefront_router", "admin_router"]
