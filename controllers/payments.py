# controllers/payments.py
from __future__ import annotations
import json
import secrets
from flask import Blueprint, request, jsonify, url_for, current_app
from flask_login import login_required, current_user

from models.store import PENDING
from services.data_sources import get_store
from services.payments.config import cfg, cfg_bool
from services.payments.errors import FeatureDisabled, Forbidden, NotFound, OrderRejected
from services.payments.orders import create_order as open_order
from services.payments.registry import get_provider
from services.payments.schemas import (
    CreateOrderRequest, VerifyPaymentRequest, PageQuery,
    OrderOut, IntentOut, IntentPage, PaymentOut, VerificationOut, envelope,
)
from services.payments.signature import sign_payment, sign_webhook_body
from services.payments.verification import verify_checkout

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.before_request
def _feature_flag():
    if not cfg_bool("RAZORPAY_ENABLED", True):
        raise FeatureDisabled("Payments are currently disabled")


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _own_intent(order_id: str):
    intent = get_store().get_intent_by_order(order_id)
    if intent is None:
        raise NotFound(f"order {order_id} not found")
    if not (current_user.is_admin or intent.user_id == current_user.username):
        raise Forbidden("order belongs to another user")
    return intent


@payments_bp.get("/config")
def checkout_config():
    """Public values the app needs to open Razorpay checkout."""
    provider = get_provider()
    return jsonify(envelope({
        "keyId": provider.key_id,
        "currency": (cfg("PAYMENT_CURRENCY") or "INR").upper(),
        "name": cfg("CHECKOUT_NAME", "Mathematico"),
        "description": cfg("CHECKOUT_DESCRIPTION", "Course, book and live class purchases"),
        "theme": {"color": cfg("CHECKOUT_THEME_COLOR", "#3399cc")},
    }))


@payments_bp.post("/create-order")
@login_required
def create_order():
    req = CreateOrderRequest.model_validate(_json_body())
    notes = req.notes

    user_id = current_user.username
    if notes.user_id and notes.user_id != user_id:
        if not current_user.is_admin:
            raise Forbidden("cannot create an order for another user")
        user_id = notes.user_id

    provider = get_provider()
    intent = open_order(
        get_store(), provider,
        user_id=user_id, item_type=notes.item_type, item_id=notes.item_id,
        amount=req.amount, currency=req.currency, receipt=req.receipt,
    )
    out = OrderOut(order_id=intent.provider_order_id, amount=intent.amount,
                   currency=intent.currency, receipt=intent.receipt, status=intent.status,
                   key_id=provider.key_id, payment_intent_id=intent.id)
    return jsonify(envelope(out, message="Order created")), 201


@payments_bp.post("/verify")
@login_required
def verify():
    req = VerifyPaymentRequest.model_validate(_json_body())
    res = verify_checkout(
        get_store(),
        user_id=current_user.username, is_admin=current_user.is_admin,
        order_id=req.order_id, payment_id=req.payment_id, signature=req.signature,
        secret=cfg("RAZORPAY_KEY_SECRET"),
    )
    out = VerificationOut(order_id=res.order_id, payment_id=res.payment_id,
                          verified=res.success, status=res.status,
                          already_processed=res.already_processed)
    if res.success:
        return jsonify(envelope(out, message="Payment verified"))
    error = "INVALID_SIGNATURE" if res.status is None else "NOT_FINALIZED"
    return jsonify(envelope(out, success=False, message=res.message,
                            error=error, retryable=False)), 400


@payments_bp.get("/order/<order_id>")
@login_required
def order_status(order_id: str):
    return jsonify(envelope(IntentOut.from_intent(_own_intent(order_id))))


@payments_bp.get("/payment/<payment_id>")
@login_required
def payment_details(payment_id: str):
    """Provider's view of a payment, for the order's owner or an admin."""
    payment = get_provider().fetch_payment(payment_id)
    intent = get_store().get_intent_by_order(payment.order_id) if payment.order_id else None
    if not current_user.is_admin:
        if intent is None:
            raise NotFound(f"payment {payment_id} not found")
        if intent.user_id != current_user.username:
            raise Forbidden("payment belongs to another user")
    return jsonify(envelope(PaymentOut.from_provider(payment, intent),
                            message="Payment details retrieved"))


@payments_bp.get("/history")
@login_required
def history():
    q = PageQuery.model_validate(request.args.to_dict())
    items, total = get_store().list_intents(
        user_id=current_user.username, status=q.status, item_type=q.item_type,
        page=q.page, limit=q.limit)
    return jsonify(envelope(IntentPage.build(items, total, q.page, q.limit)))


# ----- DEV ONLY: simulate a captured payment (used with the dummy provider) -----

@payments_bp.post("/simulate/<order_id>")
@login_required
def simulate_capture(order_id: str):
    """
    Dev helper for PAYMENT_PROVIDER=dummy:
    - signs a payment.captured event for the order and POSTs it to the webhook
    - returns the checkout signature so the client can exercise /payments/verify too
    """
    if get_provider().name != "dummy" or (cfg("APP_ENV") or "").lower() == "production":
        raise NotFound("simulation is only available with the dummy provider")

    intent = _own_intent(order_id)
    if intent.status != PENDING:
        raise OrderRejected(f"order {order_id} is already {intent.status}")

    payment_id = f"pay_sim_{secrets.token_hex(7)}"
    get_provider().capture(order_id, payment_id)
    payload = {
        "entity": "event",
        "event": "payment.captured",
        "contains": ["payment"],
        "payload": {"payment": {"entity": {
            "id": payment_id, "entity": "payment", "order_id": order_id,
            "amount": intent.amount, "currency": intent.currency, "status": "captured",
            "method": "upi", "vpa": "demo@upi",
        }}},
    }
    body = json.dumps(payload).encode("utf-8")

    # Post internally
    from werkzeug.test import EnvironBuilder, run_wsgi_app

    builder = EnvironBuilder(method="POST", path=url_for("webhook.razorpay_webhook"),
                             data=body, content_type="application/json")
    env = builder.get_environ()
    env["HTTP_X_RAZORPAY_SIGNATURE"] = sign_webhook_body(
        body, cfg("RAZORPAY_WEBHOOK_SECRET") or "")
    env["HTTP_X_RAZORPAY_EVENT_ID"] = f"evt_sim_{secrets.token_hex(7)}"

    app = current_app._get_current_object()
    app_iter, status, _headers = run_wsgi_app(app.wsgi_app, env)
    # drain iterator
    for _ in app_iter:  # noqa
        pass
    if hasattr(app_iter, "close"):
        app_iter.close()

    return jsonify(envelope({
        "orderId": order_id,
        "paymentId": payment_id,
        "signature": sign_payment(order_id, payment_id, cfg("RAZORPAY_KEY_SECRET") or ""),
        "webhookStatus": int(status.split(" ", 1)[0]),
    }))
