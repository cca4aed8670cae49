from tests.utils import (
    captured_event, checkout_signature, create_order, login_user, order_id_of, post_webhook,
)


def _verify(client, order_id, payment_id, signature=None, snake=False):
    sig = signature if signature is not None else checkout_signature(order_id, payment_id)
    if snake:
        body = {"razorpay_order_id": order_id, "razorpay_payment_id": payment_id,
                "razorpay_signature": sig}
    else:
        body = {"orderId": order_id, "paymentId": payment_id, "signature": sig}
    return client.post("/payments/verify", json=body)


def _order(client, user="alice"):
    login_user(client, user)
    return order_id_of(create_order(client))


def test_verify_finalizes_and_grants(client, store):
    oid = _order(client)
    r = _verify(client, oid, "pay_V1")
    assert r.status_code == 200
    js = r.get_json()
    assert js["success"] is True
    assert js["data"]["verified"] is True
    assert js["data"]["status"] == "completed"
    assert js["data"]["alreadyProcessed"] is False
    assert store.has_enrollment("alice", "course", "c-101")
    assert store.get_processed("pay_V1").source == "verify"


def test_checkout_callback_field_names_accepted(client, store):
    oid = _order(client)
    r = _verify(client, oid, "pay_V2", snake=True)
    assert r.status_code == 200
    assert store.get_intent_by_order(oid).status == "completed"


def test_bad_signature_leaves_intent_pending(client, store):
    oid = _order(client)
    r = _verify(client, oid, "pay_V3", signature="0" * 64)
    assert r.status_code == 400
    js = r.get_json()
    assert js["success"] is False
    assert js["error"] == "INVALID_SIGNATURE"
    assert store.get_intent_by_order(oid).status == "pending"
    assert not store.has_processed("pay_V3")


def test_webhook_after_verify_is_already_processed(client, store):
    oid = _order(client)
    assert _verify(client, oid, "pay_V4").status_code == 200

    r = post_webhook(client, captured_event(oid, "pay_V4"))
    assert r.status_code == 200
    assert r.get_json()["alreadyProcessed"] is True
    assert len(store.list_enrollments("alice")) == 1


def test_verify_after_webhook_reports_already_processed(client, store):
    oid = _order(client)
    post_webhook(client, captured_event(oid, "pay_V5"))

    r = _verify(client, oid, "pay_V5")
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["alreadyProcessed"] is True
    assert data["status"] == "completed"
    assert len(store.list_enrollments("alice")) == 1


def test_verify_unknown_order_is_404(client):
    login_user(client, "alice")
    r = _verify(client, "order_missing", "pay_V6")
    assert r.status_code == 404


def test_verify_someone_elses_order_is_403(client, store):
    oid = _order(client, "alice")
    login_user(client, "bob")
    r = _verify(client, oid, "pay_V7")
    assert r.status_code == 403
    assert store.get_intent_by_order(oid).status == "pending"


def test_verify_requires_login(client):
    r = client.post("/payments/verify", json={"orderId": "o", "paymentId": "p", "signature": "s"})
    assert r.status_code == 401


def test_verify_missing_fields_is_400(client):
    login_user(client, "alice")
    r = client.post("/payments/verify", json={"orderId": "order_1"})
    assert r.status_code == 400
    assert r.get_json()["error"] == "VALIDATION_ERROR"


def test_simulated_checkout_roundtrip(client, store):
    oid = _order(client)
    r = client.post(f"/payments/simulate/{oid}")
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["webhookStatus"] == 200
    assert store.get_intent_by_order(oid).status == "completed"

    # the app then confirms with the checkout signature it got back
    r2 = _verify(client, oid, data["paymentId"], signature=data["signature"])
    assert r2.status_code == 200
    assert r2.get_json()["data"]["alreadyProcessed"] is True


def test_order_status_and_history(client):
    oid = _order(client)
    r = client.get(f"/payments/order/{oid}")
    assert r.status_code == 200
    assert r.get_json()["data"]["orderId"] == oid

    r = client.get("/payments/history?page=1&limit=5")
    js = r.get_json()
    assert js["data"]["pagination"]["total"] == 1
    assert js["data"]["items"][0]["itemType"] == "course"

    login_user(client, "bob")
    assert client.get(f"/payments/order/{oid}").status_code == 403
    assert client.get("/payments/history").get_json()["data"]["pagination"]["total"] == 0


def test_public_checkout_config(client):
    r = client.get("/payments/config")
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["keyId"] == "rzp_test_dummy"
    assert data["currency"] == "INR"
