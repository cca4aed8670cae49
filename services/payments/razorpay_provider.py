# services/payments/razorpay_provider.py
"""
Razorpay Orders API adapter.

Configuration (Flask config, env as fallback outside an app context):
  RAZORPAY_KEY_ID        public key id, also handed to the mobile checkout
  RAZORPAY_KEY_SECRET    API secret; signs checkout callbacks
  RAZORPAY_TIMEOUT_SEC   per-request timeout (default 5)

Razorpay amounts are already in paise, so nothing is converted here.
"""

from __future__ import annotations
from typing import Any, Dict

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from services.payments.base import PaymentProvider, ProviderOrder, ProviderPayment
from services.payments.config import cfg
from services.payments.errors import NotFound, OrderRejected, ProviderUnavailable


def _to_order(js: Dict[str, Any]) -> ProviderOrder:
    return ProviderOrder(
        order_id=js["id"],
        amount=int(js["amount"]),
        currency=js.get("currency") or "INR",
        receipt=js.get("receipt"),
        status=js.get("status") or "created",
        created_at=js.get("created_at"),
        notes=dict(js.get("notes") or {}),
    )


def _to_payment(js: Dict[str, Any]) -> ProviderPayment:
    return ProviderPayment(
        payment_id=js["id"],
        order_id=js.get("order_id"),
        amount=int(js["amount"]),
        currency=js.get("currency") or "INR",
        status=js.get("status") or "created",
        method=js.get("method"),
        captured=bool(js.get("captured")),
        error_description=js.get("error_description"),
        created_at=js.get("created_at"),
    )


class RazorpayProvider(PaymentProvider):
    name = "razorpay"

    def __init__(self) -> None:
        self.key_id = cfg("RAZORPAY_KEY_ID") or ""
        key_secret = cfg("RAZORPAY_KEY_SECRET") or ""
        if not self.key_id or not key_secret:
            raise RuntimeError("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set")
        self.timeout = float(cfg("RAZORPAY_TIMEOUT_SEC", 5) or 5)
        self.client = razorpay.Client(auth=(self.key_id, key_secret))

    def _call(self, fn, *args, **kwargs) -> Dict[str, Any]:
        try:
            return fn(*args, timeout=self.timeout, **kwargs)
        except BadRequestError as e:
            raise OrderRejected(f"razorpay rejected the request: {e}",
                                error_code="PROVIDER_REJECTED") from e
        except (ServerError, GatewayError) as e:
            raise ProviderUnavailable(f"razorpay error: {e}") from e
        except requests.RequestException as e:
            raise ProviderUnavailable(f"razorpay unreachable: {e}") from e

    def create_order(self, *, amount: int, currency: str, receipt: str,
                     notes: Dict[str, Any]) -> ProviderOrder:
        js = self._call(self.client.order.create, data={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
            "payment_capture": 1,
        })
        return _to_order(js)

    def fetch_order(self, order_id: str) -> ProviderOrder:
        return _to_order(self._call(self.client.order.fetch, order_id))

    def fetch_payment(self, payment_id: str) -> ProviderPayment:
        try:
            js = self._call(self.client.payment.fetch, payment_id)
        except OrderRejected as e:
            # Razorpay answers 400 for ids it does not know
            raise NotFound(f"payment {payment_id} not found") from e
        return _to_payment(js)
