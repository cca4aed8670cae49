# services/payments/verification.py
"""
Client-driven confirmation after checkout.

The app posts (order_id, payment_id, signature) from the Razorpay checkout
callback. A bad signature only means this confirmation is untrusted, so the
intent stays pending and the webhook remains the authority for "failed".
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from models.audit_store import audit
from models.store import PaymentStore, COMPLETED, DUPLICATE, UNKNOWN_ORDER
from services.metrics import VERIFICATIONS
from services.payments.errors import Forbidden, NotFound
from services.payments.settlement import settle
from services.payments.signature import verify_payment_signature
from services.payments.transitions import plan_capture


@dataclass
class VerificationResult:
    success: bool
    order_id: str
    payment_id: str
    status: Optional[str] = None
    already_processed: bool = False
    message: Optional[str] = None


def verify_checkout(store: PaymentStore, *, user_id: str, order_id: str, payment_id: str,
                    signature: str, secret: Optional[str], is_admin: bool = False) -> VerificationResult:
    log = current_app.logger

    if not secret:
        log.error("RAZORPAY_KEY_SECRET is not configured; cannot verify checkout")
    if not secret or not verify_payment_signature(order_id, payment_id, signature, secret):
        VERIFICATIONS.labels(outcome="mismatch").inc()
        log.warning("Checkout signature mismatch for order %s (user %s)", order_id, user_id)
        audit("payment.verify.rejected", target_type="order", target_id=order_id,
              outcome="blocked", status=400, error_code="INVALID_SIGNATURE",
              extra={"order_id": order_id, "payment_id": payment_id}, store=store)
        return VerificationResult(False, order_id, payment_id,
                                  message="Payment signature verification failed")

    intent = store.get_intent_by_order(order_id)
    if intent is None:
        raise NotFound(f"order {order_id} not found")
    if intent.user_id != user_id and not is_admin:
        raise Forbidden("order belongs to another user")

    if store.has_processed(payment_id):
        current = store.get_intent_by_order(order_id)
        VERIFICATIONS.labels(outcome="duplicate").inc()
        return VerificationResult(current.status == COMPLETED, order_id, payment_id,
                                  status=current.status, already_processed=True)

    # amount/currency come from our own intent, not from the client
    result = settle(store, event_key=payment_id, order_id=order_id,
                    decide=lambda i: plan_capture(i, payment_id=payment_id,
                                                  amount=None, currency=None),
                    source="verify", event_type="payment.captured")
    if result.state == UNKNOWN_ORDER:
        raise NotFound(f"order {order_id} not found")

    status = result.intent.status if result.intent else None
    ok = status == COMPLETED
    VERIFICATIONS.labels(outcome="duplicate" if result.state == DUPLICATE
                         else ("verified" if ok else "rejected")).inc()
    return VerificationResult(
        ok, order_id, payment_id, status=status,
        already_processed=result.state == DUPLICATE,
        message=None if ok else f"Payment could not be finalized ({result.outcome})",
    )
