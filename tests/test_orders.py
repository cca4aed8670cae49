import pytest

from models.store import CatalogEntry, PENDING
from services.payments.dummy_provider import DummyProvider
from services.payments.errors import OrderRejected, ProviderUnavailable
from services.payments.orders import RECEIPT_MAX_LEN, create_order, make_receipt
from tests.utils import create_order as post_order, login_user


def _order(store, **kw):
    args = dict(user_id="alice", item_type="course", item_id="c-101",
                amount=50000, currency="INR")
    args.update(kw)
    return create_order(store, DummyProvider(), **args)


def test_creates_pending_intent(app_ctx, store):
    intent = _order(store, receipt="rcpt-1")
    assert intent.status == PENDING
    assert intent.provider == "dummy"
    assert intent.provider_order_id.startswith("order_dummy_")
    assert intent.amount == 50000 and intent.currency == "INR"
    assert intent.notes["itemType"] == "course" and intent.notes["userId"] == "alice"
    assert store.get_intent_by_order(intent.provider_order_id).id == intent.id


@pytest.mark.parametrize("kw", [
    {"amount": 0},
    {"amount": -5},
    {"amount": True},
    {"amount": 500.0},
    {"amount": 49999},
    {"currency": "USD"},
    {"item_type": "video"},
    {"item_id": "missing"},
    {"item_id": "c-draft", "amount": 10000},
    {"user_id": "mallory"},
])
def test_rejects_bad_orders_without_persisting(app_ctx, store, kw):
    with pytest.raises(OrderRejected):
        _order(store, **kw)
    _, total = store.list_intents()
    assert total == 0


def test_rejects_already_owned_item(app_ctx, store):
    from services.payments.settlement import settle
    from services.payments.transitions import plan_capture

    intent = _order(store)
    settle(store, event_key="pay_own", order_id=intent.provider_order_id,
           decide=lambda i: plan_capture(i, payment_id="pay_own", amount=None, currency=None),
           source="verify", event_type="payment.captured")
    with pytest.raises(OrderRejected):
        _order(store)


def test_provider_unavailable_is_retryable_and_persists_nothing(app_ctx, store, monkeypatch):
    def boom(self, **kw):
        raise ProviderUnavailable("razorpay unreachable: timed out")

    monkeypatch.setattr(DummyProvider, "create_order", boom)
    with pytest.raises(ProviderUnavailable) as ei:
        _order(store)
    assert ei.value.retryable is True
    assert store.list_intents()[1] == 0


def test_receipt_fits_razorpay_limit():
    assert make_receipt("course", "short") == "short"
    long = make_receipt("live_class", "x" * 80)
    assert len(long) <= RECEIPT_MAX_LEN and long.startswith("receipt_live_class_")
    assert len(make_receipt("book")) <= RECEIPT_MAX_LEN


def test_create_order_route(client):
    login_user(client, "alice")
    r = post_order(client, receipt="rcpt-route")
    assert r.status_code == 201
    js = r.get_json()
    assert js["success"] is True
    data = js["data"]
    assert data["orderId"].startswith("order_dummy_")
    assert data["amount"] == 50000 and data["currency"] == "INR"
    assert data["status"] == "pending"
    assert data["keyId"] == "rzp_test_dummy"


def test_create_order_route_accepts_legacy_course_id_and_hyphenated_type(client):
    login_user(client, "alice")
    r = client.post("/payments/create-order", json={
        "amount": 50000, "currency": "INR", "notes": {"itemType": "course", "courseId": "c-101"}})
    assert r.status_code == 201
    r2 = client.post("/payments/create-order", json={
        "amount": 19900, "notes": {"item_type": "live-class", "item_id": "lc-1"}})
    assert r2.status_code == 201


def test_create_order_route_validation_errors(client):
    login_user(client, "alice")
    r = client.post("/payments/create-order", json={"amount": "50000", "notes": {"itemType": "course", "itemId": "c-101"}})
    assert r.status_code == 400
    assert r.get_json()["error"] == "VALIDATION_ERROR"

    r = client.post("/payments/create-order", json={"amount": 50000, "notes": {"itemType": "podcast", "itemId": "x"}})
    assert r.status_code == 400

    r = post_order(client, amount=100)
    assert r.status_code == 400
    assert r.get_json()["error"] == "ORDER_REJECTED"


def test_create_order_requires_login(client):
    r = post_order(client)
    assert r.status_code == 401
    assert r.get_json()["success"] is False


def test_cannot_order_for_another_user(client):
    login_user(client, "alice")
    r = post_order(client, userId="bob")
    assert r.status_code == 403


def test_admin_can_order_on_behalf(client):
    login_user(client, "admin")
    r = post_order(client, userId="bob")
    assert r.status_code == 201
    oid = r.get_json()["data"]["orderId"]
    login_user(client, "bob")
    assert client.get(f"/payments/order/{oid}").status_code == 200


def test_provider_outage_maps_to_503(client, monkeypatch):
    def boom(self, **kw):
        raise ProviderUnavailable("razorpay unreachable")

    monkeypatch.setattr(DummyProvider, "create_order", boom)
    login_user(client, "alice")
    r = post_order(client)
    assert r.status_code == 503
    js = r.get_json()
    assert js["error"] == "PROVIDER_UNAVAILABLE" and js["retryable"] is True


def test_catalog_currency_respected(app_ctx, store):
    store.upsert_catalog_item(CatalogEntry("book", "b-usd", "Imported", 1500, currency="USD"))
    intent = _order(store, item_type="book", item_id="b-usd", amount=1500, currency="usd")
    assert intent.currency == "USD"
