# services/payments/transitions.py
"""
PaymentIntent lifecycle:

    pending ──> completed ──> refunded
       └──────> failed

Nothing else is allowed. The plan_* helpers never raise: an illegal or
inconsistent request becomes a Transition with a "rejected:<reason>" outcome
that leaves the intent untouched.
"""

from __future__ import annotations

from models.store import PaymentIntent, Transition, PENDING, COMPLETED, FAILED, REFUNDED
from services.payments.errors import InvalidTransition

ALLOWED = {
    PENDING: {COMPLETED, FAILED},
    COMPLETED: {REFUNDED},
    FAILED: set(),
    REFUNDED: set(),
}


def can_transition(current: str, new: str) -> bool:
    return new in ALLOWED.get(current, set())


def ensure_transition(current: str, new: str) -> None:
    if not can_transition(current, new):
        raise InvalidTransition(f"{current} -> {new} is not allowed")


def _rejected(reason: str) -> Transition:
    return Transition(new_status=None, outcome=f"rejected:{reason}")


def plan_capture(intent: PaymentIntent, *, payment_id: str, amount: int | None,
                 currency: str | None) -> Transition:
    if intent.status == COMPLETED and intent.provider_payment_id == payment_id:
        return Transition(new_status=None, outcome="noop:already_completed")
    try:
        ensure_transition(intent.status, COMPLETED)
    except InvalidTransition:
        return _rejected(f"{intent.status}_to_completed")
    if amount is not None and int(amount) != int(intent.amount):
        return _rejected("amount_mismatch")
    if currency and currency.upper() != intent.currency.upper():
        return _rejected("currency_mismatch")
    return Transition(new_status=COMPLETED, outcome="completed",
                      provider_payment_id=payment_id, grant=True)


def plan_failure(intent: PaymentIntent, *, payment_id: str, reason: str | None) -> Transition:
    if not can_transition(intent.status, FAILED):
        return _rejected(f"{intent.status}_to_failed")
    return Transition(new_status=FAILED, outcome="failed",
                      provider_payment_id=payment_id,
                      failure_reason=(reason or "payment failed")[:500])


def plan_refund(intent: PaymentIntent, *, payment_id: str | None) -> Transition:
    if not can_transition(intent.status, REFUNDED):
        return _rejected(f"{intent.status}_to_refunded")
    if payment_id and intent.provider_payment_id and payment_id != intent.provider_payment_id:
        return _rejected("payment_mismatch")
    return Transition(new_status=REFUNDED, outcome="refunded")
