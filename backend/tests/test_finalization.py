import pytest

from conftest import amount_paise, sign_payment, stage_payment, webhook_body, sign_webhook
from storefront.models import (
    Coupon, Order, PaymentLog, PendingPayment, Product, ProductVariant, ServiceablePincode,
)
from storefront.services import finalization_engine
from storefront.utils.errors import (
    AmountMismatchError, ConflictError, NotFoundError, SignatureError, StockError,
)


def money_plant_line(catalog, quantity=3):
    return {"product_id": catalog["money_plant"], "name": "Money Plant", "price": 400.0, "quantity": quantity}


def events(db, gateway_order_id):
    db.expire_all()
    return [
        row.event_type for row in
        db.query(PaymentLog).filter(PaymentLog.correlation_id == gateway_order_id).order_by(PaymentLog.id).all()
    ]


def stock_of(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock


def test_end_to_end_coupon_and_free_delivery(db, catalog, finalizer, notifier):
    pending = stage_payment(db, [money_plant_line(catalog)], coupon_code="SAVE10")
    assert pending.subtotal == 1200
    assert pending.discount_amount == 120
    assert pending.shipping_cost == 0
    assert pending.amount == 1080

    result = finalizer._finalize(db, pending.gateway_order_id, "pay_E2E", source="webhook", captured_paise=108000)

    assert result.success and not result.already_processed
    db.expire_all()
    order = db.query(Order).filter(Order.gateway_order_id == pending.gateway_order_id).one()
    assert order.total_amount == 1080
    assert order.order_status == "PAID"
    assert order.order_number.startswith("VAN")
    assert [(i.name, i.quantity, i.price) for i in order.items] == [("Money Plant", 3, 400.0)]
    assert stock_of(db, catalog["money_plant"]) == 7
    assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().used_count == 1
    assert events(db, pending.gateway_order_id).count("FINALIZED") == 1
    assert db.get(PendingPayment, pending.id).status == "SUCCESS"
    assert notifier.orders == [order.order_number]


def test_callback_and_webhook_in_any_order_create_one_order(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog, quantity=2)])
    order_id = pending.gateway_order_id
    signature = sign_payment(order_id, "pay_1")

    first = finalizer.finalize_from_callback(db, order_id, "pay_1", signature, "user-1")
    body = webhook_body("payment.captured", order_id, "pay_1", amount=amount_paise(pending))
    for _ in range(3):
        assert finalizer.handle_webhook(db, body, sign_webhook(body)) == "ok"
    replay = finalizer.finalize_from_callback(db, order_id, "pay_1", signature, "user-1")

    assert first.success and not first.already_processed
    assert replay.success and replay.already_processed
    assert replay.order_number == first.order_number
    assert db.query(Order).filter(Order.gateway_order_id == order_id).count() == 1
    # Stock moves by the ordered quantity exactly once
    assert stock_of(db, catalog["money_plant"]) == 8
    assert events(db, order_id).count("FINALIZED") == 1


def test_unique_constraint_settles_a_lost_race(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog, quantity=1)])
    # A concurrent finalizer committed its Order but this worker still saw PENDING
    db.add(Order(order_number="VANWINNER", user_id="user-1", gateway_order_id=pending.gateway_order_id,
                 customer_name="Asha", mobile="9876543210", address="x", city="y", state="z",
                 pincode="110001", subtotal=400, total_amount=499, order_status="PAID"))
    db.commit()

    result = finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                                 captured_paise=amount_paise(pending))

    assert result.success and result.already_processed
    assert result.order_number == "VANWINNER"
    assert stock_of(db, catalog["money_plant"]) == 10
    assert "FINALIZED" not in events(db, pending.gateway_order_id)


def test_missing_pending_payment_is_a_silent_noop(db, catalog, finalizer):
    result = finalizer._finalize(db, "order_UNKNOWN", "pay_1", source="webhook", captured_paise=100)
    assert result.success and result.already_processed
    assert result.order_number is None
    assert db.query(Order).count() == 0


def test_callback_from_another_user_is_rejected(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])
    with pytest.raises(NotFoundError):
        finalizer.finalize_from_callback(db, pending.gateway_order_id, "pay_1",
                                         sign_payment(pending.gateway_order_id, "pay_1"), "intruder")
    db.expire_all()
    assert db.get(PendingPayment, pending.id).status == "PENDING"


def test_bad_signature_fails_the_attempt(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])
    with pytest.raises(SignatureError):
        finalizer.finalize_from_callback(db, pending.gateway_order_id, "pay_1", "deadbeef", "user-1")

    db.expire_all()
    row = db.get(PendingPayment, pending.id)
    assert row.status == "FAILED"
    assert row.failure_reason == "SIGNATURE_INVALID"
    assert db.query(Order).count() == 0
    assert "FAILED" in events(db, pending.gateway_order_id)


def test_stock_sold_out_after_checkout(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog, quantity=3)])
    db.get(Product, catalog["money_plant"]).stock = 2
    db.commit()

    with pytest.raises(StockError):
        finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                            captured_paise=amount_paise(pending))

    db.expire_all()
    assert db.get(PendingPayment, pending.id).failure_reason == "OUT_OF_STOCK"
    assert stock_of(db, catalog["money_plant"]) == 2
    assert db.query(Order).count() == 0


def test_variant_stock_is_checked_and_decremented(db, catalog, finalizer):
    line = {"product_id": catalog["snake_plant"], "name": "Snake Plant", "price": 600.0, "quantity": 2,
            "size": "Large"}
    pending = stage_payment(db, [line])

    result = finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                                 captured_paise=amount_paise(pending))

    assert result.success
    db.expire_all()
    large = db.query(ProductVariant).filter(ProductVariant.size == "Large").one()
    assert large.stock == 0
    assert db.get(Product, catalog["snake_plant"]).stock == 5
    order = db.query(Order).one()
    assert order.items[0].selected_size == "Large"


def test_amount_mismatch_is_rejected(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])

    with pytest.raises(AmountMismatchError):
        finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                            captured_paise=amount_paise(pending) - 5000)

    db.expire_all()
    assert db.get(PendingPayment, pending.id).failure_reason == "AMOUNT_MISMATCH"
    assert db.query(Order).count() == 0


def test_cancel_while_pending_logs_one_cancel(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])

    assert finalizer.cancel(db, pending.gateway_order_id, "user-1") == {"ok": True, "skipped": False}
    assert finalizer.cancel(db, pending.gateway_order_id, "user-1") == {"ok": True, "skipped": True}

    db.expire_all()
    row = db.get(PendingPayment, pending.id)
    assert (row.status, row.failure_reason) == ("FAILED", "CANCELED")
    assert events(db, pending.gateway_order_id).count("CANCELED") == 1


def test_cancel_after_success_is_skipped(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])
    finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                        captured_paise=amount_paise(pending))
    before = events(db, pending.gateway_order_id)

    assert finalizer.cancel(db, pending.gateway_order_id, "user-1") == {"ok": True, "skipped": True}

    db.expire_all()
    assert db.get(PendingPayment, pending.id).status == "SUCCESS"
    assert events(db, pending.gateway_order_id) == before


def test_success_after_cancel_is_logged_not_applied(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])
    finalizer.cancel(db, pending.gateway_order_id, "user-1")

    result = finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                                 captured_paise=amount_paise(pending))

    assert not result.success
    assert result.error_code == "CANCELED"
    assert db.query(Order).count() == 0
    assert events(db, pending.gateway_order_id)[-1] == "IGNORED"


def test_failed_webhook_marks_pending_failed(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog)])
    body = webhook_body("payment.failed", pending.gateway_order_id, status="failed")

    assert finalizer.handle_webhook(db, body, sign_webhook(body)) == "ok"

    db.expire_all()
    assert db.get(PendingPayment, pending.id).failure_reason == "GATEWAY_FAILED"


def test_webhook_signature_is_checked_before_parsing(db, finalizer):
    with pytest.raises(SignatureError):
        finalizer.handle_webhook(db, b"not json", sign_webhook(b"not json", secret="other"))
    with pytest.raises(SignatureError):
        finalizer.handle_webhook(db, b"{}", None)


def test_unhandled_webhook_event_is_ignored(db, finalizer):
    body = webhook_body("refund.created", "order_X")
    assert finalizer.handle_webhook(db, body, sign_webhook(body)) == "ignored"


def test_unrelated_unique_collision_is_retryable(db, catalog, finalizer, monkeypatch):
    pending = stage_payment(db, [money_plant_line(catalog, quantity=1)])
    db.add(Order(order_number="VANTAKEN", user_id="user-2", gateway_order_id="order_OTHER",
                 customer_name="Ravi", mobile="9876543211", address="x", city="y", state="z",
                 pincode="110001", subtotal=400, total_amount=499, order_status="PAID"))
    db.commit()
    monkeypatch.setattr(finalization_engine, "ensure_unique_order_number", lambda db: "VANTAKEN")

    with pytest.raises(ConflictError):
        finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                            captured_paise=amount_paise(pending))

    db.expire_all()
    assert db.get(PendingPayment, pending.id).status == "PENDING"
    assert stock_of(db, catalog["money_plant"]) == 10
    assert "FINALIZED" not in events(db, pending.gateway_order_id)


def test_pincode_withdrawn_after_checkout_still_finalizes(db, catalog, finalizer):
    pending = stage_payment(db, [money_plant_line(catalog, quantity=1)])
    db.query(ServiceablePincode).update({"is_active": False})
    db.commit()

    result = finalizer._finalize(db, pending.gateway_order_id, "pay_1", source="webhook",
                                 captured_paise=amount_paise(pending))

    assert result.success and not result.already_processed
