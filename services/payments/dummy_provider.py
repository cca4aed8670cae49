# services/payments/dummy_provider.py
"""
A development-only provider that never leaves the process.
Useful to test end-to-end flows without touching Razorpay.

How it works:
- create_order(...) mints a local "order_dummy_<hex>" id and remembers it.
- capture(...) records a captured payment against a known order.
- the dev-only /payments/simulate route captures through it, then signs a Razorpay-shaped
  payment.captured webhook for that order and posts it to our own webhook.
"""

from __future__ import annotations
import threading
import time
import uuid
from dataclasses import replace
from typing import Any, Dict

from services.payments.base import PaymentProvider, ProviderOrder, ProviderPayment
from services.payments.errors import NotFound


class DummyProvider(PaymentProvider):
    name = "dummy"
    key_id = "rzp_test_dummy"

    _orders: Dict[str, ProviderOrder] = {}
    _payments: Dict[str, ProviderPayment] = {}
    _lock = threading.Lock()

    def create_order(self, *, amount: int, currency: str, receipt: str,
                     notes: Dict[str, Any]) -> ProviderOrder:
        order = ProviderOrder(
            order_id=f"order_dummy_{uuid.uuid4().hex[:14]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
            created_at=int(time.time()),
            notes=dict(notes),
        )
        with self._lock:
            self._orders[order.order_id] = order
        return replace(order)

    def fetch_order(self, order_id: str) -> ProviderOrder:
        with self._lock:
            order = self._orders.get(order_id)
        if not order:
            raise NotFound(f"order {order_id} not found")
        return replace(order)

    def capture(self, order_id: str, payment_id: str, method: str = "upi") -> ProviderPayment:
        order = self.fetch_order(order_id)
        payment = ProviderPayment(
            payment_id=payment_id,
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
            status="captured",
            method=method,
            captured=True,
            created_at=int(time.time()),
        )
        with self._lock:
            self._payments[payment_id] = payment
            self._orders[order_id] = replace(order, status="paid")
        return replace(payment)

    def fetch_payment(self, payment_id: str) -> ProviderPayment:
        with self._lock:
            payment = self._payments.get(payment_id)
        if not payment:
            raise NotFound(f"payment {payment_id} not found")
        return replace(payment)
