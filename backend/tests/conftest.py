import hashlib
import hmac
import json
from datetime import datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.config import get_settings
from storefront.database import get_db, init_db
from storefront.main import app
from storefront.models import (
    Product, ProductVariant, Combo, Coupon, PendingPayment, ServiceablePincode,
)
from storefront.routes.admin import get_reconciler
from storefront.services.finalization_engine import PaymentFinalizer, get_finalizer
from storefront.services.gateway_client import RazorpayGateway, get_gateway, to_paise
from storefront.services.notification_service import get_notifier
from storefront.services.order_service import CartSnapshotItem, price_order
from storefront.services.payment_logger import PaymentLogger, get_payment_logger
from storefront.services.reconciliation import ReconciliationService
from storefront.services.settings_service import SettingsService
from storefront.utils.rate_limiter import InMemoryCounterStore, RateLimiter, set_rate_limiter

KEY_ID = "rzp_test_key"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

SHIPPING = {
    "customer_name": "Asha Verma",
    "mobile": "9876543210",
    "email": "asha@example.com",
    "address": "12 Garden Lane, Sector 4",
    "city": "New Delhi",
    "state": "Delhi",
    "pincode": "110001",
    "notes": None,
}


# ─── Gateway fake ────────────────────────────────────────────────────

class _FakeOrderResource:
    def __init__(self, client):
        self.client = client

    def create(self, data, timeout=None):
        self.client.calls.append(("order.create", data, timeout))
        if self.client.error:
            raise self.client.error
        self.client.order_seq += 1
        order_id = f"order_TEST{self.client.order_seq:04d}"
        return {"id": order_id, "amount": data["amount"], "currency": data["currency"], "receipt": data["receipt"]}

    def payments(self, order_id, timeout=None):
        self.client.calls.append(("order.payments", order_id, timeout))
        if self.client.error:
            raise self.client.error
        return {"items": self.client.payments.get(order_id, [])}


class _FakePaymentResource:
    def __init__(self, client):
        self.client = client

    def fetch(self, payment_id, timeout=None):
        self.client.calls.append(("payment.fetch", payment_id, timeout))
        if self.client.error:
            raise self.client.error
        for items in self.client.payments.values():
            for item in items:
                if item["id"] == payment_id:
                    return item
        return {}


class FakeRazorpayClient:
    """Stands in for razorpay.Client: records calls, serves canned payments."""

    def __init__(self):
        self.calls = []
        self.payments = {}
        self.error = None
        self.order_seq = 0
        self.order = _FakeOrderResource(self)
        self.payment = _FakePaymentResource(self)

    def add_payment(self, order_id, payment_id="pay_TEST0001", amount=0, status="captured"):
        self.payments.setdefault(order_id, []).append(
            {"id": payment_id, "order_id": order_id, "amount": amount, "currency": "INR", "status": status}
        )


class RecordingNotifier:
    def __init__(self):
        self.orders = []

    def order_placed(self, order_number):
        self.orders.append(order_number)

    def shutdown(self):
        pass


# ─── Database ────────────────────────────────────────────────────────

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ─── Collaborators ───────────────────────────────────────────────────

@pytest.fixture
def fake_client():
    return FakeRazorpayClient()


@pytest.fixture
def gateway(fake_client):
    return RazorpayGateway(key_id=KEY_ID, key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET,
                           timeout=2.0, client=fake_client)


@pytest.fixture
def audit(session_factory):
    return PaymentLogger(session_factory=session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def finalizer(gateway, audit, notifier):
    return PaymentFinalizer(gateway, audit, notifier)


@pytest.fixture
def reconciler(finalizer, session_factory):
    return ReconciliationService(finalizer, session_factory)


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    set_rate_limiter(RateLimiter(InMemoryCounterStore(sweep_interval=None)))
    yield
    set_rate_limiter(None)


@pytest.fixture
def client(session_factory, gateway, audit, notifier, finalizer, reconciler):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_payment_logger] = lambda: audit
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_finalizer] = lambda: finalizer
    app.dependency_overrides[get_reconciler] = lambda: reconciler
    yield TestClient(app)
    app.dependency_overrides.clear()


# ─── Auth / signing helpers ──────────────────────────────────────────

def make_token(user_id="user-1", role="USER"):
    settings = get_settings()
    payload = {"user_id": user_id, "role": role, "exp": datetime.utcnow() + timedelta(hours=1)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user_id="user-1", role="USER"):
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def sign_payment(order_id, payment_id, secret=KEY_SECRET):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def webhook_body(event, order_id, payment_id="pay_TEST0001", amount=0, status="captured"):
    payload = {
        "event": event,
        "payload": {"payment": {"entity": {
            "id": payment_id, "order_id": order_id, "amount": amount,
            "currency": "INR", "status": status, "method": "upi",
        }}},
    }
    return json.dumps(payload).encode()


def sign_webhook(body, secret=WEBHOOK_SECRET):
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ─── Catalog seed ────────────────────────────────────────────────────

@pytest.fixture
def catalog(db):
    money_plant = Product(name="Money Plant", slug="money-plant", category="plants", price=400.0, stock=10,
                          status="ACTIVE", images=["money.jpg"])
    snake_plant = Product(name="Snake Plant", slug="snake-plant", category="plants", price=300.0, stock=7,
                          status="ACTIVE", images=["snake.jpg"])
    snake_plant.variants = [
        ProductVariant(size="Small", price=300.0, stock=5),
        ProductVariant(size="Large", price=600.0, stock=2),
    ]
    combo = Combo(name="Desk Garden Combo", slug="desk-garden", price=899.0, stock=3, status="ACTIVE", images=[])
    coupon = Coupon(code="SAVE10", discount_type="PERCENTAGE", discount_value=10, usage_per_user=1, used_count=0,
                    is_active=True, min_order_value=0)
    db.add_all([money_plant, snake_plant, combo, coupon, ServiceablePincode(pincode="110001", city="New Delhi",
                                                                            state="Delhi", is_active=True)])
    db.commit()
    return {"money_plant": money_plant.id, "snake_plant": snake_plant.id, "combo": combo.id}


def stage_payment(db, items, gateway_order_id="order_TEST9001", user_id="user-1", coupon_code=None,
                  created_at=None, expires_at=None):
    """PendingPayment priced exactly as checkout initiation would price it."""
    snapshot = [CartSnapshotItem(**item) for item in items]
    totals = price_order(db, snapshot, SettingsService.get_delivery(db), coupon_code, user_id=user_id)
    now = created_at or datetime.utcnow()
    pending = PendingPayment(
        gateway_order_id=gateway_order_id,
        receipt_id=f"rcpt_{gateway_order_id}",
        user_id=user_id,
        status="PENDING",
        amount=totals.total_amount,
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        shipping_cost=totals.shipping_cost,
        coupon_code=totals.coupon_code,
        cart_snapshot=[i.to_dict() for i in snapshot],
        expires_at=expires_at or now + timedelta(minutes=30),
        created_at=now,
        **SHIPPING,
    )
    db.add(pending)
    db.commit()
    return pending


def amount_paise(pending):
    return to_paise(pending.amount)
