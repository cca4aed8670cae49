# services/payments/settlement.py
"""
The Applying step shared by the webhook and the client verification path.

Both key the ledger by the provider payment id, so whichever arrives second
sees DUPLICATE and changes nothing.
"""

from __future__ import annotations
from typing import Optional

from flask import current_app

from models.audit_store import audit
from models.store import (
    ApplyResult, Decide, PaymentStore,
    APPLIED, DUPLICATE, NOOP, REJECTED, UNKNOWN_ORDER,
)
from services.metrics import ENROLLMENTS_GRANTED
from services.payments import fulfillment


def settle(store: PaymentStore, *, event_key: str, order_id: str, decide: Decide,
           source: str, event_type: str, webhook_event_id: Optional[str] = None,
           payload: Optional[dict] = None) -> ApplyResult:
    log = current_app.logger
    result = store.apply_once(event_key, order_id, decide, source=source,
                              event_type=event_type, webhook_event_id=webhook_event_id,
                              payload=payload)

    extra = {"order_id": order_id, "event_id": event_key, "event_type": event_type,
             "source": source, "outcome": result.outcome}
    target_id = str(result.intent.id) if result.intent else None

    if result.state == DUPLICATE:
        log.info("%s %s for order %s already processed", source, event_key, order_id)
    elif result.state == UNKNOWN_ORDER:
        log.warning("%s %s references unknown order %s; ignored", source, event_key, order_id)
    elif result.state == NOOP:
        log.info("%s %s for order %s: %s", source, event_key, order_id, result.outcome)
    elif result.state == REJECTED:
        log.warning("Payment anomaly: %s %s on order %s (status=%s): %s",
                    source, event_key, order_id,
                    result.intent.status if result.intent else None, result.outcome)
        audit("payment.anomaly", target_type="payment_intent", target_id=target_id,
              outcome="blocked", error_code=result.outcome.split(":", 1)[-1].upper(),
              extra=extra, store=store)
    elif result.state == APPLIED:
        log.info("Order %s -> %s via %s (%s)", order_id, result.intent.status, source, event_key)
        audit("payment.finalized", target_type="payment_intent", target_id=target_id,
              outcome="success", extra={**extra, "new": result.intent.status}, store=store)
        if result.grant_created:
            ENROLLMENTS_GRANTED.labels(item_type=result.intent.item_type).inc()
            fulfillment.dispatch(result.intent)

    return result
