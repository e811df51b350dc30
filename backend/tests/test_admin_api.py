from datetime import datetime, timedelta

import pytest

from conftest import SHIPPING, amount_paise, auth_headers, stage_payment
from storefront.models import Coupon, PaymentLog, PendingPayment, Product

ADMIN = auth_headers("admin-1", role="ADMIN")


@pytest.fixture
def cod_order(client, catalog):
    body = {"shipping": SHIPPING, "items": [{"product_id": catalog["money_plant"], "quantity": 3}],
            "coupon_code": "SAVE10", "payment_method": "COD"}
    return client.post("/api/orders", json=body, headers=auth_headers()).json()


@pytest.mark.parametrize("path", ["/api/admin/dashboard", "/api/admin/orders", "/api/admin/payment-logs",
                                  "/api/admin/delivery-config"])
def test_shoppers_are_forbidden(client, path):
    assert client.get(path, headers=auth_headers()).status_code == 403
    assert client.get(path).status_code == 401


def test_dashboard(client, cod_order):
    body = client.get("/api/admin/dashboard", headers=ADMIN).json()
    assert body["total_orders"] == 1
    assert body["orders_by_status"] == {"PENDING": 1}
    assert body["paid_revenue"] == 0


def test_order_search_and_filters(client, cod_order):
    by_number = client.get("/api/admin/orders", params={"search": cod_order["order_number"]}, headers=ADMIN)
    assert by_number.json()["total"] == 1
    assert client.get("/api/admin/orders", params={"search": "Asha"}, headers=ADMIN).json()["total"] == 1
    assert client.get("/api/admin/orders", params={"status": "PAID"}, headers=ADMIN).json()["total"] == 0
    assert client.get("/api/admin/orders", params={"limit": 500}, headers=ADMIN).status_code == 422


def test_order_lifecycle(client, cod_order):
    url = f"/api/admin/orders/{cod_order['id']}"
    for status in ("PAID", "PACKING"):
        assert client.put(url, json={"order_status": status}, headers=ADMIN).json()["order_status"] == status

    shipped = client.put(url, json={"order_status": "SHIPPED", "tracking_number": "TRK123",
                                    "courier_name": "Delhivery"}, headers=ADMIN).json()
    assert shipped["tracking_number"] == "TRK123"
    assert shipped["shipped_at"] is not None

    delivered = client.put(url, json={"order_status": "DELIVERED"}, headers=ADMIN).json()
    assert delivered["delivered_at"] is not None

    backwards = client.put(url, json={"order_status": "PACKING"}, headers=ADMIN)
    assert backwards.status_code == 400
    assert backwards.json()["error_code"] == "INVALID_TRANSITION"


def test_cancel_restores_stock_and_coupon(client, db, catalog, cod_order):
    response = client.put(f"/api/admin/orders/{cod_order['id']}", json={"order_status": "CANCELLED"},
                          headers=ADMIN)
    assert response.json()["order_status"] == "CANCELLED"

    db.expire_all()
    assert db.get(Product, catalog["money_plant"]).stock == 10
    assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().used_count == 0


def test_unknown_order(client):
    assert client.get("/api/admin/orders/999", headers=ADMIN).status_code == 404


def test_payment_logs_filter_and_paginate(client, audit):
    for n in range(3):
        audit.log_event(event_type="CREATED", status="PENDING", gateway_order_id=f"order_{n}")
    audit.log_event(event_type="FAILED", status="FAILED", gateway_order_id="order_0", message="declined")

    page = client.get("/api/admin/payment-logs", params={"limit": 2}, headers=ADMIN).json()
    assert page["total"] == 4
    assert len(page["logs"]) == 2
    assert page["logs"][0]["event_type"] == "FAILED"

    failed = client.get("/api/admin/payment-logs", params={"status": "FAILED"}, headers=ADMIN).json()
    assert [log["message"] for log in failed["logs"]] == ["declined"]

    by_order = client.get("/api/admin/payment-logs", params={"gateway_order_id": "order_0"}, headers=ADMIN)
    assert by_order.json()["total"] == 2


def test_payment_trail(client, audit):
    audit.log_event(event_type="CREATED", status="PENDING", gateway_order_id="order_T")
    audit.log_event(event_type="FINALIZED", status="SUCCESS", gateway_order_id="order_T")

    trail = client.get("/api/admin/payment-logs/order_T", headers=ADMIN).json()
    assert [e["event_type"] for e in trail["events"]] == ["CREATED", "FINALIZED"]
    assert client.get("/api/admin/payment-logs/order_none", headers=ADMIN).status_code == 404


@pytest.mark.parametrize("method", ["post", "put", "patch", "delete"])
@pytest.mark.parametrize("path", ["/api/admin/payment-logs", "/api/admin/payment-logs/order_T"])
def test_payment_logs_are_read_only(client, db, audit, method, path):
    audit.log_event(event_type="CREATED", status="PENDING", gateway_order_id="order_T")
    response = client.request(method.upper(), path, headers=ADMIN)
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET"
    assert db.query(PaymentLog).count() == 1


def test_delivery_config_round_trip(client):
    defaults = client.get("/api/admin/delivery-config", headers=ADMIN).json()
    assert defaults["delivery_charge_type"] == "FLAT"

    updated = client.put("/api/admin/delivery-config", json={"delivery_charge_type": "CONDITIONAL",
                                                             "flat_delivery_charge": 49}, headers=ADMIN).json()
    assert updated["delivery_charge_type"] == "CONDITIONAL"
    assert updated["free_delivery_min_amount"] == 999
    assert client.get("/api/admin/delivery-config", headers=ADMIN).json()["flat_delivery_charge"] == 49

    bad = client.put("/api/admin/delivery-config", json={"delivery_charge_type": "FREE"}, headers=ADMIN)
    assert bad.status_code == 422


def test_notification_settings_round_trip(client):
    assert client.get("/api/admin/notification-settings", headers=ADMIN).json()["low_stock_threshold"] == 5
    updated = client.put("/api/admin/notification-settings",
                         json={"admin_email": "ops@example.com", "low_stock_threshold": 2}, headers=ADMIN).json()
    assert updated["admin_email"] == "ops@example.com"
    assert updated["order_alerts_enabled"] is True


def test_reconcile_endpoint_finalizes_captured_payment(client, db, catalog, fake_client):
    line = {"product_id": catalog["money_plant"], "name": "Money Plant", "price": 400.0, "quantity": 1}
    old = datetime.utcnow() - timedelta(hours=1)
    pending = stage_payment(db, [line], created_at=old)
    fake_client.add_payment(pending.gateway_order_id, "pay_R1", amount=amount_paise(pending), status="captured")

    report = client.post("/api/admin/payments/reconcile", headers=ADMIN).json()
    assert report["checked"] == 1
    assert len(report["finalized"]) == 1
    assert report["needs_repair"] == []


def test_cleanup_endpoint(client, db, catalog):
    line = {"product_id": catalog["money_plant"], "name": "Money Plant", "price": 400.0, "quantity": 1}
    stale = stage_payment(db, [line], gateway_order_id="order_OLD", created_at=datetime.utcnow() - timedelta(days=40))
    stale.status = "FAILED"
    db.commit()
    stage_payment(db, [line], gateway_order_id="order_NEW")

    preview = client.post("/api/admin/cleanup/payments", params={"dry_run": True}, headers=ADMIN).json()
    assert preview == {"pending_deleted": 0, "failed_deleted": 1, "logs_deleted": 0, "dry_run": True}
    assert db.query(PendingPayment).count() == 2

    client.post("/api/admin/cleanup/payments", headers=ADMIN)
    db.expire_all()
    assert [p.gateway_order_id for p in db.query(PendingPayment).all()] == ["order_NEW"]
