import pytest
import requests
from razorpay.errors import BadRequestError, ServerError

from services.payments.dummy_provider import DummyProvider
from services.payments.errors import NotFound, OrderRejected, ProviderUnavailable
from services.payments.razorpay_provider import RazorpayProvider
from services.payments.registry import get_provider


def test_dummy_provider_create_and_fetch():
    p = DummyProvider()
    order = p.create_order(amount=50000, currency="INR", receipt="r1", notes={"itemType": "course"})
    assert order.order_id.startswith("order_dummy_")
    again = p.fetch_order(order.order_id)
    assert again.amount == 50000 and again.notes == {"itemType": "course"}
    with pytest.raises(NotFound):
        p.fetch_order("order_missing")


def test_registry_picks_configured_provider(app):
    with app.app_context():
        assert get_provider().name == "dummy"
        app.config["PAYMENT_PROVIDER"] = "razorpay"
        try:
            assert isinstance(get_provider(), RazorpayProvider)
            app.config["PAYMENT_PROVIDER"] = "stripe"
            with pytest.raises(RuntimeError):
                get_provider()
        finally:
            app.config["PAYMENT_PROVIDER"] = "dummy"


def _razorpay(app, monkeypatch, fn):
    with app.app_context():
        p = RazorpayProvider()
    monkeypatch.setattr(p.client.order, "create", fn)
    return p


def test_razorpay_create_order_passes_timeout_and_capture(app, monkeypatch):
    seen = {}

    def create(data=None, **kwargs):
        seen.update(data=data, kwargs=kwargs)
        return {"id": "order_Rz1", "amount": data["amount"], "currency": "INR",
                "receipt": data["receipt"], "status": "created", "created_at": 1700000000}

    p = _razorpay(app, monkeypatch, create)
    order = p.create_order(amount=50000, currency="INR", receipt="r1", notes={"userId": "alice"})
    assert order.order_id == "order_Rz1" and order.amount == 50000
    assert seen["data"]["payment_capture"] == 1
    assert seen["kwargs"]["timeout"] == pytest.approx(5.0)


@pytest.mark.parametrize("exc,expected", [
    (BadRequestError("amount too low"), OrderRejected),
    (ServerError("upstream 502"), ProviderUnavailable),
    (requests.ConnectionError("refused"), ProviderUnavailable),
    (requests.Timeout("read timed out"), ProviderUnavailable),
])
def test_razorpay_errors_are_mapped(app, monkeypatch, exc, expected):
    def create(data=None, **kwargs):
        raise exc

    p = _razorpay(app, monkeypatch, create)
    with pytest.raises(expected):
        p.create_order(amount=50000, currency="INR", receipt="r1", notes={})


def test_razorpay_needs_credentials(app):
    with app.app_context():
        old = app.config["RAZORPAY_KEY_SECRET"]
        app.config["RAZORPAY_KEY_SECRET"] = None
        try:
            with pytest.raises(RuntimeError):
                RazorpayProvider()
        finally:
            app.config["RAZORPAY_KEY_SECRET"] = old


def test_dummy_provider_capture_and_fetch_payment():
    p = DummyProvider()
    order = p.create_order(amount=29900, currency="INR", receipt="r2", notes={})
    p.capture(order.order_id, "pay_dummy_1")
    pay = p.fetch_payment("pay_dummy_1")
    assert pay.order_id == order.order_id
    assert pay.amount == 29900 and pay.status == "captured" and pay.captured
    assert p.fetch_order(order.order_id).status == "paid"
    with pytest.raises(NotFound):
        p.fetch_payment("pay_missing")


def test_razorpay_fetch_payment(app, monkeypatch):
    with app.app_context():
        p = RazorpayProvider()
    seen = {}

    def fetch(payment_id, data=None, **kwargs):
        seen.update(payment_id=payment_id, kwargs=kwargs)
        return {"id": payment_id, "entity": "payment", "order_id": "order_Rz1",
                "amount": 50000, "currency": "INR", "status": "captured",
                "method": "upi", "captured": True, "created_at": 1700000100}

    monkeypatch.setattr(p.client.payment, "fetch", fetch)
    pay = p.fetch_payment("pay_Rz1")
    assert pay.payment_id == "pay_Rz1" and pay.order_id == "order_Rz1"
    assert pay.method == "upi" and pay.captured is True
    assert seen["kwargs"]["timeout"] == pytest.approx(5.0)


@pytest.mark.parametrize("exc,expected", [
    (BadRequestError("The id provided does not exist"), NotFound),
    (ServerError("upstream 502"), ProviderUnavailable),
])
def test_razorpay_fetch_payment_errors(app, monkeypatch, exc, expected):
    with app.app_context():
        p = RazorpayProvider()

    def fetch(payment_id, data=None, **kwargs):
        raise exc

    monkeypatch.setattr(p.client.payment, "fetch", fetch)
    with pytest.raises(expected):
        p.fetch_payment("pay_nope")
