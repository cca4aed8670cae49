import pytest

from app import create_app
from controllers.webhook import limiter
from tests.utils import TEST_CONFIG, captured_event, post_webhook


@pytest.fixture()
def limited_app(db_engine):
    app = create_app({**TEST_CONFIG,
                      "WEBHOOK_RATE_LIMIT_ENABLED": True,
                      "WEBHOOK_RATE_LIMIT": "3 per minute"})
    limiter.reset()
    yield app
    limiter.reset()


def test_webhook_is_throttled_per_source(limited_app):
    c = limited_app.test_client()
    for i in range(3):
        r = post_webhook(c, captured_event("order_unknown", f"pay_R{i}"))
        assert r.status_code == 200

    r = post_webhook(c, captured_event("order_unknown", "pay_R9"))
    assert r.status_code == 429
    body = r.get_json()
    assert body["success"] is False
    assert body["error"] == "RATE_LIMIT_EXCEEDED"
    assert body["retryable"] is True
    assert "Retry-After" in r.headers


def test_throttled_before_signature_check(limited_app):
    c = limited_app.test_client()
    for _ in range(3):
        assert post_webhook(c, captured_event("order_x", "pay_S1"), secret="wrong").status_code == 400
    assert post_webhook(c, captured_event("order_x", "pay_S1")).status_code == 429


def test_health_is_not_throttled(limited_app):
    c = limited_app.test_client()
    for _ in range(3):
        post_webhook(c, captured_event("order_unknown", "pay_T1"))
    for _ in range(5):
        assert c.get("/webhook/razorpay/health").status_code == 200


def test_limit_can_be_switched_off(client):
    # the shared test app runs with WEBHOOK_RATE_LIMIT_ENABLED off
    for i in range(40):
        assert post_webhook(client, captured_event("order_unknown", f"pay_U{i}")).status_code == 200
