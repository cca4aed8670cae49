# services/payments/orders.py
"""
Order Service: validate the purchase against the catalog, open an order with
the provider, persist the pending PaymentIntent.

Nothing is persisted unless the provider accepted the order. A provider that
cannot be reached surfaces as ProviderUnavailable (retryable).
"""

from __future__ import annotations
import time
from typing import Optional

from flask import current_app

from models.audit_store import audit
from models.store import PaymentIntent, PaymentStore, ITEM_TYPES
from services.metrics import ORDERS_CREATED, ORDER_FAILURES
from services.payments.base import PaymentProvider
from services.payments.errors import OrderRejected, ProviderUnavailable

RECEIPT_MAX_LEN = 40  # Razorpay hard limit


def make_receipt(item_type: str, receipt: Optional[str] = None) -> str:
    if receipt:
        receipt = receipt.strip()
    if receipt and len(receipt) <= RECEIPT_MAX_LEN:
        return receipt
    # last 8 digits of the ms clock keep it short and roughly unique
    return f"receipt_{item_type}_{str(int(time.time() * 1000))[-8:]}"


def _reject(message: str, reason: str):
    ORDER_FAILURES.labels(reason=reason).inc()
    return OrderRejected(message)


def create_order(store: PaymentStore, provider: PaymentProvider, *, user_id: str,
                 item_type: str, item_id: str, amount: int, currency: str,
                 receipt: Optional[str] = None, notes: Optional[dict] = None) -> PaymentIntent:
    # bool is an int subclass; True must not pass as 1 paisa
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise _reject("amount must be a positive integer in minor units", "bad_amount")
    if item_type not in ITEM_TYPES:
        raise _reject(f"unknown item type: {item_type}", "bad_item_type")
    if not user_id or store.get_user(user_id) is None:
        raise _reject("unknown user", "unknown_user")

    item = store.get_catalog_item(item_type, item_id)
    if item is None or not item.is_published:
        raise _reject(f"{item_type} {item_id} is not available", "unknown_item")
    if store.has_enrollment(user_id, item_type, item_id):
        raise _reject(f"{item_type} {item_id} is already owned", "already_owned")

    currency = (currency or "").upper()
    if currency != item.currency.upper():
        raise _reject(f"currency must be {item.currency}", "currency_mismatch")
    if amount != item.price:
        raise _reject("amount does not match the item price", "amount_mismatch")

    receipt = make_receipt(item_type, receipt)
    order_notes = {**(notes or {}), "userId": user_id,
                   "itemType": item_type, "itemId": item_id}

    try:
        order = provider.create_order(amount=amount, currency=currency,
                                      receipt=receipt, notes=order_notes)
    except ProviderUnavailable as e:
        ORDER_FAILURES.labels(reason="provider_unavailable").inc()
        current_app.logger.warning(
            "Provider %s unavailable creating order for %s/%s: %s",
            provider.name, item_type, item_id, e)
        raise
    except OrderRejected:
        ORDER_FAILURES.labels(reason="provider_rejected").inc()
        raise

    intent = store.create_intent(
        provider=provider.name, provider_order_id=order.order_id, user_id=user_id,
        item_type=item_type, item_id=item_id, amount=amount, currency=currency,
        receipt=receipt, notes=order_notes,
    )

    ORDERS_CREATED.labels(item_type=item_type).inc()
    current_app.logger.info("Order %s created for user=%s %s/%s amount=%s %s",
                            order.order_id, user_id, item_type, item_id, amount, currency)
    audit("payment.order.created", target_type="payment_intent", target_id=str(intent.id),
          outcome="success", status=200,
          extra={"order_id": order.order_id, "amount": amount, "currency": currency,
                 "item_type": item_type, "item_id": item_id},
          store=store)
    return intent
