# services/payments/webhooks.py
"""
Razorpay webhook handling.

    Received ──bad/missing signature──> 400, nothing touched, audited
        │
        ├─ ledger already has the key ──> 200 {alreadyProcessed: true}
        │
        └─ Applying ──unknown order──> 200, nothing touched
                    └─ applied / rejected ──> 200, ledger row committed

The signature is checked against the raw request bytes before anything is
parsed. Handlers raise PaymentError subclasses; the blueprint turns them into
JSON responses.
"""

from __future__ import annotations
import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from flask import current_app

from models.audit_store import audit
from models.store import PaymentStore, StoreUnavailable, DUPLICATE
from services.metrics import WEBHOOK_EVENTS
from services.payments.errors import SignatureMismatch, WebhookFormatError
from services.payments.settlement import settle
from services.payments.signature import verify_webhook_signature
from services.payments.transitions import plan_capture, plan_failure, plan_refund

PROVIDER = "razorpay"

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"
REFUND_PROCESSED = "refund.processed"
ORDER_PAID = "order.paid"

HANDLED_EVENTS = (PAYMENT_CAPTURED, PAYMENT_FAILED, REFUND_PROCESSED, ORDER_PAID)

# never persisted on the ledger row
SENSITIVE_PAYMENT_FIELDS = ("card_id", "bank", "wallet", "vpa", "email", "contact")


@dataclass
class RazorpayEvent:
    event_type: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    refund_id: Optional[str] = None
    error_reason: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookOutcome:
    event_type: str
    state: str
    already_processed: bool = False

    def body(self) -> dict:
        return {"success": True, "alreadyProcessed": self.already_processed}


def _entity(payload: dict, name: str) -> dict:
    outer = payload.get("payload")
    if outer is None:
        return {}
    if not isinstance(outer, dict):
        raise WebhookFormatError("webhook payload must be an object")
    wrapper = outer.get(name)
    if wrapper is None:
        return {}
    if not isinstance(wrapper, dict):
        raise WebhookFormatError(f"webhook payload.{name} must be an object")
    ent = wrapper.get("entity")
    if ent is None:
        return {}
    if not isinstance(ent, dict):
        raise WebhookFormatError(f"webhook payload.{name}.entity must be an object")
    return ent


def _str_or_none(ent: dict, key: str, where: str) -> Optional[str]:
    v = ent.get(key)
    if v is None or v == "":
        return None
    if not isinstance(v, str):
        raise WebhookFormatError(f"{where}.{key} must be a string")
    return v


def _int_or_none(v: Any) -> Optional[int]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def parse_event(raw_body: bytes) -> RazorpayEvent:
    try:
        data = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WebhookFormatError(f"webhook body is not valid JSON: {e}")
    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        raise WebhookFormatError("webhook body has no event type")

    payment = _entity(data, "payment")
    refund = _entity(data, "refund")
    order = _entity(data, "order")

    error_reason = payment.get("error_description") or payment.get("error_reason")
    return RazorpayEvent(
        event_type=data["event"],
        payment_id=(_str_or_none(payment, "id", "payment")
                    or _str_or_none(refund, "payment_id", "refund")),
        order_id=(_str_or_none(payment, "order_id", "payment")
                  or _str_or_none(order, "id", "order")),
        amount=_int_or_none(payment.get("amount")),
        currency=_str_or_none(payment, "currency", "payment"),
        refund_id=_str_or_none(refund, "id", "refund"),
        error_reason=str(error_reason) if error_reason else None,
        payload=data,
    )


def sanitize_payload(data: dict) -> dict:
    clean = copy.deepcopy(data)
    payment = _entity(clean, "payment")
    for k in SENSITIVE_PAYMENT_FIELDS:
        payment.pop(k, None)
    return clean


def _count(event_type: str, outcome: str) -> None:
    label = event_type if event_type in HANDLED_EVENTS else "other"
    WEBHOOK_EVENTS.labels(provider=PROVIDER, event=label, outcome=outcome).inc()


def _audit_rejection(error_code: str) -> None:
    # a rejected delivery stays a 400 even when the store is down
    try:
        audit("payment.webhook.rejected", target_type="webhook", outcome="blocked",
              status=400, error_code=error_code, actor="razorpay")
    except StoreUnavailable as e:
        current_app.logger.error("Could not audit rejected webhook (%s): %s", error_code, e)


def _check_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    log = current_app.logger
    if not signature:
        _count("unknown", "missing_signature")
        _audit_rejection("MISSING_SIGNATURE")
        raise WebhookFormatError("missing x-razorpay-signature header",
                                 error_code="MISSING_SIGNATURE")
    if not secret:
        log.error("RAZORPAY_WEBHOOK_SECRET is not configured; rejecting webhook")
    if not secret or not verify_webhook_signature(raw_body, signature, secret):
        _count("unknown", "invalid_signature")
        log.warning("Webhook signature mismatch (%d bytes)", len(raw_body or b""))
        _audit_rejection("INVALID_SIGNATURE")
        raise SignatureMismatch("invalid webhook signature")


def _require(ev: RazorpayEvent, *names: str) -> None:
    missing = [n for n in names if not getattr(ev, n)]
    if missing:
        raise WebhookFormatError(f"{ev.event_type} payload is missing {', '.join(missing)}")


def handle_webhook(store: PaymentStore, raw_body: bytes, signature: Optional[str], *,
                   secret: Optional[str], event_id: Optional[str] = None) -> WebhookOutcome:
    log = current_app.logger
    _check_signature(raw_body, signature, secret)
    ev = parse_event(raw_body)

    if ev.event_type in (PAYMENT_CAPTURED, PAYMENT_FAILED):
        _require(ev, "payment_id", "order_id")
        key = ev.payment_id
        if ev.event_type == PAYMENT_CAPTURED:
            def decide(intent):
                return plan_capture(intent, payment_id=ev.payment_id,
                                    amount=ev.amount, currency=ev.currency)
        else:
            def decide(intent):
                return plan_failure(intent, payment_id=ev.payment_id, reason=ev.error_reason)
    elif ev.event_type == REFUND_PROCESSED:
        _require(ev, "refund_id", "order_id")
        key = ev.refund_id

        def decide(intent):
            return plan_refund(intent, payment_id=ev.payment_id)
    elif ev.event_type == ORDER_PAID:
        log.info("order.paid for %s (payment %s); waiting for payment.captured",
                 ev.order_id, ev.payment_id)
        audit("payment.webhook.order_paid", target_type="order", target_id=ev.order_id,
              outcome="noop", actor="razorpay",
              extra={"order_id": ev.order_id, "payment_id": ev.payment_id,
                     "event_id": event_id})
        _count(ev.event_type, "logged")
        return WebhookOutcome(ev.event_type, "logged")
    else:
        log.info("Ignoring webhook event %s", ev.event_type)
        _count(ev.event_type, "ignored")
        return WebhookOutcome(ev.event_type, "ignored")

    # fast path; the atomic claim inside settle() is what actually decides
    if store.has_processed(key):
        log.info("Webhook %s %s already processed", ev.event_type, key)
        _count(ev.event_type, DUPLICATE)
        return WebhookOutcome(ev.event_type, DUPLICATE, already_processed=True)

    result = settle(store, event_key=key, order_id=ev.order_id, decide=decide,
                    source="webhook", event_type=ev.event_type, webhook_event_id=event_id,
                    payload=sanitize_payload(ev.payload))
    _count(ev.event_type, result.state)
    return WebhookOutcome(ev.event_type, result.state,
                          already_processed=result.state == DUPLICATE)
