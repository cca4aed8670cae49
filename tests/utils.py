# tests/utils.py
import json

from services.payments.signature import sign_payment, sign_webhook_body

WEBHOOK_SECRET = "whsec_test_4f1c"
KEY_SECRET = "rzp_key_secret_test_91ab"
KEY_ID = "rzp_test_key_id"

TEST_CONFIG = {
    "TESTING": True,
    "PAYMENT_PROVIDER": "dummy",
    "PAYMENTS_DATA_SOURCE": "live",
    "RAZORPAY_ENABLED": True,
    "RAZORPAY_KEY_ID": KEY_ID,
    "RAZORPAY_KEY_SECRET": KEY_SECRET,
    "RAZORPAY_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "FULFILLMENT_SYNC": True,
    "WEBHOOK_RATE_LIMIT_ENABLED": False,
    "METRICS_ENABLED": False,
}


def login_user(client, username, password=None):
    return client.post("/login", json={"username": username,
                                       "password": password or username})


def create_order(client, item_type="course", item_id="c-101", amount=50000, currency="INR", **notes):
    return client.post("/payments/create-order", json={
        "amount": amount,
        "currency": currency,
        "notes": {"itemType": item_type, "itemId": item_id, **notes},
    })


def order_id_of(resp):
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"]["orderId"]


def captured_event(order_id, payment_id, amount=50000, currency="INR", **extra):
    entity = {"id": payment_id, "entity": "payment", "order_id": order_id,
              "amount": amount, "currency": currency, "status": "captured", **extra}
    return {"entity": "event", "event": "payment.captured", "contains": ["payment"],
            "payload": {"payment": {"entity": entity}}}


def failed_event(order_id, payment_id, reason="Payment declined by bank"):
    entity = {"id": payment_id, "entity": "payment", "order_id": order_id,
              "amount": 50000, "currency": "INR", "status": "failed",
              "error_description": reason}
    return {"entity": "event", "event": "payment.failed", "contains": ["payment"],
            "payload": {"payment": {"entity": entity}}}


def refund_event(order_id, payment_id, refund_id, amount=50000):
    return {"entity": "event", "event": "refund.processed", "contains": ["refund", "payment"],
            "payload": {
                "refund": {"entity": {"id": refund_id, "entity": "refund",
                                      "payment_id": payment_id, "amount": amount}},
                "payment": {"entity": {"id": payment_id, "entity": "payment",
                                       "order_id": order_id, "amount": amount,
                                       "currency": "INR", "status": "refunded"}},
            }}


def webhook_body(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


def post_webhook(client, payload=None, *, body=None, signature=None, secret=WEBHOOK_SECRET,
                 event_id=None):
    body = body if body is not None else webhook_body(payload)
    headers = {"Content-Type": "application/json"}
    sig = signature if signature is not None else sign_webhook_body(body, secret)
    if sig:
        headers["X-Razorpay-Signature"] = sig
    if event_id:
        headers["X-Razorpay-Event-Id"] = event_id
    return client.post("/webhook/razorpay", data=body, headers=headers)


def checkout_signature(order_id, payment_id, secret=KEY_SECRET):
    return sign_payment(order_id, payment_id, secret)
