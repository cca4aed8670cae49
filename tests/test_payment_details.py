from services.payments.dummy_provider import DummyProvider
from tests.utils import captured_event, create_order, login_user, order_id_of, post_webhook


def _captured_order(client, user="alice"):
    login_user(client, user)
    oid = order_id_of(create_order(client))
    DummyProvider().capture(oid, f"pay_{oid[-8:]}")
    return oid, f"pay_{oid[-8:]}"


def test_owner_sees_provider_payment(client):
    oid, pid = _captured_order(client)
    r = client.get(f"/payments/payment/{pid}")
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["paymentId"] == pid
    assert data["orderId"] == oid
    assert data["status"] == "captured"
    assert data["amount"] == 50000
    assert data["localStatus"] == "pending"

    post_webhook(client, captured_event(oid, pid))
    assert client.get(f"/payments/payment/{pid}").get_json()["data"]["localStatus"] == "completed"


def test_other_user_is_forbidden(client):
    _oid, pid = _captured_order(client)
    client.post("/logout")
    login_user(client, "bob")
    r = client.get(f"/payments/payment/{pid}")
    assert r.status_code == 403
    assert r.get_json()["error"] == "FORBIDDEN"


def test_admin_can_read_any_payment(client):
    _oid, pid = _captured_order(client)
    client.post("/logout")
    login_user(client, "admin")
    assert client.get(f"/payments/payment/{pid}").status_code == 200


def test_unknown_payment_is_404(client):
    login_user(client, "alice")
    r = client.get("/payments/payment/pay_does_not_exist")
    assert r.status_code == 404


def test_requires_login(client):
    r = client.get("/payments/payment/pay_x")
    assert r.status_code == 401
