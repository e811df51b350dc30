"""
Order Service — cart pricing, stock and order assembly shared by every checkout path.

Stock moves only through conditional UPDATEs (``stock >= qty``), never a
read-then-write, so concurrent orders for the same low-stock item cannot oversell.
"""
import logging
import secrets
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.models.catalog import Product, ProductVariant, Combo, GiftHamper
from storefront.models.order import Order, OrderItem
from storefront.services.coupon_engine import CouponEngine
from storefront.services.delivery_pricing import compute_charge, final_total
from storefront.services.settings_service import SettingsService
from storefront.utils.errors import NotFoundError, StockError, ValidationError

logger = logging.getLogger(__name__)


# ─── Cart snapshot ───────────────────────────────────────────────────

@dataclass
class CartSnapshotItem:
    name: str
    price: float
    quantity: int
    product_id: Optional[int] = None
    combo_id: Optional[int] = None
    hamper_id: Optional[int] = None
    image: Optional[str] = None
    size: Optional[str] = None
    selected_color: Optional[str] = None
    custom_message: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.name} ({self.size})" if self.size else self.name

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CartSnapshotItem":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


def load_snapshot(raw: Optional[list]) -> List[CartSnapshotItem]:
    return [CartSnapshotItem.from_dict(item) for item in (raw or [])]


@dataclass
class OrderTotals:
    subtotal: float
    discount_amount: float = 0.0
    shipping_cost: float = 0.0
    total_amount: float = 0.0
    coupon_code: Optional[str] = None
    coupon_message: Optional[str] = None


def cart_subtotal(items: Iterable[CartSnapshotItem]) -> float:
    return round(sum(i.price * i.quantity for i in items), 2)


def calculate_totals(items: List[CartSnapshotItem], delivery_settings, discount_amount: float = 0.0) -> OrderTotals:
    """Free-delivery eligibility uses the pre-discount subtotal."""
    subtotal = cart_subtotal(items)
    shipping = compute_charge(subtotal, delivery_settings)
    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        shipping_cost=shipping,
        total_amount=final_total(subtotal, discount_amount, shipping),
    )


def price_order(
    db: Session,
    items: List[CartSnapshotItem],
    delivery_settings,
    coupon_code: Optional[str] = None,
    user_id: Optional[str] = None,
    skip_date_validation: bool = False,
    exclude_pending_id: Optional[int] = None,
) -> OrderTotals:
    """Server-side pricing: subtotal → coupon → delivery → total."""
    subtotal = cart_subtotal(items)
    discount, applied, message = 0.0, None, None
    if coupon_code:
        result = CouponEngine.validate(
            db, coupon_code, subtotal, user_id=user_id,
            skip_date_validation=skip_date_validation, exclude_pending_id=exclude_pending_id,
        )
        message = result.message
        if result.valid:
            discount, applied = result.discount_amount, result.code
    totals = calculate_totals(items, delivery_settings, discount)
    totals.coupon_code = applied
    totals.coupon_message = message
    return totals


# ─── Catalog lookups ─────────────────────────────────────────────────

def resolve_variant(product: Product, size: Optional[str]) -> Optional[ProductVariant]:
    """Explicit size, else the only variant; None means price and stock come from the parent."""
    if not product.variants:
        return None
    if size:
        for variant in product.variants:
            if variant.size == size:
                return variant
        raise StockError(f"Size {size} is no longer available for {product.name}")
    if len(product.variants) == 1:
        return product.variants[0]
    return None


def build_snapshot(db: Session, lines) -> List[CartSnapshotItem]:
    """Price requested lines from the catalog. Client prices are never trusted."""
    if not lines:
        raise ValidationError("Cart is empty")

    items: List[CartSnapshotItem] = []
    for line in lines:
        if line.quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        if line.product_id is not None:
            product = db.get(Product, line.product_id)
            if product is None:
                raise NotFoundError(f"Product {line.product_id} no longer exists")
            if product.status != "ACTIVE":
                raise ValidationError(f"{product.name} is no longer available")
            variant = resolve_variant(product, line.size)
            price = variant.price if variant else product.price
            stock = variant.stock if variant else product.stock
            item = CartSnapshotItem(
                product_id=product.id, name=product.name, price=price, quantity=line.quantity,
                image=(product.images or [None])[0], size=variant.size if variant else None,
            )
        elif line.combo_id is not None or line.hamper_id is not None:
            model = Combo if line.combo_id is not None else GiftHamper
            entity_id = line.combo_id if line.combo_id is not None else line.hamper_id
            entity = db.get(model, entity_id)
            if entity is None:
                raise NotFoundError(f"Item {entity_id} no longer exists")
            if entity.status != "ACTIVE":
                raise ValidationError(f"{entity.name} is no longer available")
            stock = entity.stock
            item = CartSnapshotItem(
                name=entity.name, price=entity.price, quantity=line.quantity,
                image=(entity.images or [None])[0],
                combo_id=line.combo_id, hamper_id=line.hamper_id,
            )
        else:
            raise ValidationError("Each cart line needs a product, combo or hamper id")

        if stock < line.quantity:
            raise StockError(f"Insufficient stock for {item.label}")
        item.selected_color = getattr(line, "selected_color", None)
        item.custom_message = getattr(line, "custom_message", None)
        items.append(item)
    return items


# ─── Stock ───────────────────────────────────────────────────────────

def validate_stock(db: Session, items: List[CartSnapshotItem]) -> None:
    """Variant-aware availability check; raises StockError on the first shortfall."""
    for item in items:
        if item.product_id is not None:
            product = db.get(Product, item.product_id)
            if product is None:
                raise StockError(f"{item.name} no longer exists")
            available = product.stock
            if item.size and product.variants:
                variant = next((v for v in product.variants if v.size == item.size), None)
                if variant is None:
                    raise StockError(f"Size {item.size} is no longer available for {item.name}")
                available = variant.stock
        else:
            model = Combo if item.combo_id is not None else GiftHamper
            entity = db.get(model, item.combo_id if item.combo_id is not None else item.hamper_id)
            if entity is None:
                raise StockError(f"{item.name} no longer exists")
            available = entity.stock
        if available < item.quantity:
            raise StockError(f"Insufficient stock for {item.label}")


def _take(db: Session, model, criteria: list, quantity: int, label: str) -> None:
    result = db.execute(
        update(model)
        .where(*criteria, model.stock >= quantity)
        .values(stock=model.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StockError(f"Insufficient stock for {label}: stock was taken by a concurrent order")


def decrement_stock(db: Session, items: List[CartSnapshotItem]) -> None:
    """Decrement-if-available per line, inside the caller's transaction."""
    for item in items:
        if item.product_id is not None:
            if item.size:
                _take(db, ProductVariant,
                      [ProductVariant.product_id == item.product_id, ProductVariant.size == item.size],
                      item.quantity, item.label)
            # Parent stock tracks the variant total
            _take(db, Product, [Product.id == item.product_id], item.quantity, item.label)
        elif item.combo_id is not None:
            _take(db, Combo, [Combo.id == item.combo_id], item.quantity, item.label)
        elif item.hamper_id is not None:
            _take(db, GiftHamper, [GiftHamper.id == item.hamper_id], item.quantity, item.label)


def restore_stock(db: Session, order_items: List[OrderItem]) -> None:
    """Put stock back on cancellation. Catalog rows deleted since purchase are skipped."""
    for item in order_items:
        if item.product_id is not None:
            model, criteria = Product, [Product.id == item.product_id]
        elif item.combo_id is not None:
            model, criteria = Combo, [Combo.id == item.combo_id]
        elif item.hamper_id is not None:
            model, criteria = GiftHamper, [GiftHamper.id == item.hamper_id]
        else:
            continue

        result = db.execute(
            update(model).where(*criteria)
            .values(stock=model.stock + item.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("restore_stock: %s for '%s' no longer exists, skipping", model.__tablename__, item.name)
            continue

        if item.product_id is not None and item.selected_size:
            db.execute(
                update(ProductVariant)
                .where(ProductVariant.product_id == item.product_id, ProductVariant.size == item.selected_size)
                .values(stock=ProductVariant.stock + item.quantity)
                .execution_options(synchronize_session=False)
            )


# ─── Orders ──────────────────────────────────────────────────────────

def generate_order_number() -> str:
    """<prefix><epoch ms><8 random hex chars>"""
    prefix = get_settings().ORDER_NUMBER_PREFIX
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(4).upper()}"


def ensure_unique_order_number(db: Session, attempts: int = 5) -> str:
    for _ in range(attempts):
        candidate = generate_order_number()
        if db.query(Order.id).filter(Order.order_number == candidate).first() is None:
            return candidate
    raise ValidationError("Failed to generate a unique order number")


def build_order_items(items: List[CartSnapshotItem]) -> List[OrderItem]:
    return [
        OrderItem(
            product_id=i.product_id, combo_id=i.combo_id, hamper_id=i.hamper_id,
            name=i.name, price=i.price, quantity=i.quantity, image=i.image,
            selected_size=i.size, selected_color=i.selected_color, custom_message=i.custom_message,
        )
        for i in items
    ]


# Admin-driven lifecycle after creation
ALLOWED_TRANSITIONS = {
    "PENDING": {"PAID", "CANCELLED"},
    "PAID": {"PACKING", "CANCELLED"},
    "PACKING": {"SHIPPED", "CANCELLED"},
    "SHIPPED": {"DELIVERED"},
    "DELIVERED": set(),
    "CANCELLED": set(),
}


class OrderService:

    @staticmethod
    def place_offline_order(db: Session, user_id: str, shipping: dict, lines, coupon_code: Optional[str],
                            payment_method: str):
        """COD / WhatsApp order: priced, stocked and committed in one transaction.

        Returns ``(order, snapshot_items)``.
        """
        items = build_snapshot(db, lines)
        totals = price_order(db, items, SettingsService.get_delivery(db), coupon_code, user_id=user_id)
        if coupon_code and not totals.coupon_code:
            raise ValidationError(totals.coupon_message or "Invalid coupon", error_code="COUPON_INVALID")

        try:
            order = Order(
                order_number=ensure_unique_order_number(db),
                user_id=user_id,
                subtotal=totals.subtotal,
                discount_amount=totals.discount_amount,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total_amount,
                coupon_code=totals.coupon_code,
                payment_method=payment_method,
                order_status="PENDING",
                items=build_order_items(items),
                **shipping,
            )
            db.add(order)
            db.flush()
            decrement_stock(db, items)
            if totals.coupon_code:
                CouponEngine.increment_usage(db, totals.coupon_code)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        return order, items

    @staticmethod
    def update_status(db: Session, order: Order, new_status: Optional[str], **fields) -> Order:
        """Apply an admin transition; cancellation restores stock and coupon usage atomically."""
        try:
            if new_status and new_status != order.order_status:
                if new_status not in ALLOWED_TRANSITIONS.get(order.order_status, set()):
                    raise ValidationError(
                        f"Cannot move order from {order.order_status} to {new_status}",
                        error_code="INVALID_TRANSITION",
                    )
                if new_status == "CANCELLED":
                    restore_stock(db, order.items)
                    if order.coupon_code:
                        CouponEngine.release_usage(db, order.coupon_code)
                elif new_status == "SHIPPED" and not order.shipped_at:
                    order.shipped_at = datetime.utcnow()
                elif new_status == "DELIVERED" and not order.delivered_at:
                    order.delivered_at = datetime.utcnow()
                order.order_status = new_status

            for name in ("tracking_number", "courier_name", "notes"):
                if fields.get(name) is not None:
                    setattr(order, name, fields[name])
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        return order
