from storefront.models import PaymentLog
from storefront.services.payment_logger import PaymentLogger, sanitize_payload


def test_sensitive_keys_are_dropped():
    payload = {"apiKey": "k", "cardNumber": "4111", "razorpay_signature": "s", "password": "p",
               "otp": "1234", "amount": 500, "nested": {"client_secret": "x", "status": "captured"}}
    clean = sanitize_payload(payload)
    assert clean == {"amount": 500, "nested": {"status": "captured"}}


def test_long_strings_are_truncated():
    clean = sanitize_payload({"description": "x" * 1000})
    assert clean["description"] == "x" * 500 + "…"
    assert len(clean["description"]) == 501


def test_lists_are_capped_at_ten():
    assert sanitize_payload({"items": list(range(25))})["items"] == list(range(10))


def test_depth_is_capped():
    clean = sanitize_payload({"a": {"b": {"c": {"d": 1}}}})
    assert clean == {"a": {"b": {"c": "[truncated]"}}}


def test_scalars_pass_through():
    assert sanitize_payload(None) is None
    assert sanitize_payload(True) is True
    assert sanitize_payload(12.5) == 12.5


def test_log_event_writes_sanitized_row(db, audit):
    audit.log_event(event_type="WEBHOOK_RECEIVED", status="INFO", gateway_order_id="order_1",
                    raw_payload={"token": "t", "event": "payment.captured"}, message="hello")
    row = db.query(PaymentLog).one()
    assert row.correlation_id == "order_1"
    assert row.raw_payload == {"event": "payment.captured"}


def test_log_event_never_raises():
    def broken_factory():
        raise RuntimeError("database unavailable")

    PaymentLogger(session_factory=broken_factory).log_event(event_type="FAILED", status="FAILED")


def test_recorded_row_rolls_back_with_caller(db, audit):
    audit.record(db, event_type="FINALIZED", status="SUCCESS", gateway_order_id="order_2")
    db.rollback()
    assert db.query(PaymentLog).count() == 0


def test_trail_is_ordered_per_correlation(db, audit):
    for event in ("CREATED", "WEBHOOK_RECEIVED", "FINALIZED"):
        audit.log_event(event_type=event, status="INFO", gateway_order_id="order_3")
    audit.log_event(event_type="CREATED", status="INFO", gateway_order_id="order_other")

    trail = PaymentLogger.get_trail(db, "order_3")
    assert [row.event_type for row in trail] == ["CREATED", "WEBHOOK_RECEIVED", "FINALIZED"]
