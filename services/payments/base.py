# services/payments/base.py
"""
Abstract interface + order model for payment providers.
Adapters must implement PaymentProvider.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Protocol


@dataclass
class ProviderOrder:
    order_id: str                 # provider's id, e.g. 'order_Nx...'
    amount: int                   # minor units
    currency: str
    receipt: Optional[str]
    status: str                   # 'created' | 'attempted' | 'paid'
    created_at: Optional[int] = None
    notes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderPayment:
    payment_id: str               # provider's id, e.g. 'pay_Nx...'
    order_id: Optional[str]
    amount: int                   # minor units
    currency: str
    status: str                   # 'created' | 'authorized' | 'captured' | 'refunded' | 'failed'
    method: Optional[str] = None
    captured: bool = False
    error_description: Optional[str] = None
    created_at: Optional[int] = None


class PaymentProvider(Protocol):
    name: str
    key_id: str

    def create_order(self, *, amount: int, currency: str, receipt: str,
                     notes: Dict[str, Any]) -> ProviderOrder:
        """
        Create an order on the provider.
        Raise ProviderUnavailable on network / 5xx failures and OrderRejected
        when the provider refuses the request.
        """

    def fetch_order(self, order_id: str) -> ProviderOrder:
        """Fetch an order back from the provider (same error contract)."""

    def fetch_payment(self, payment_id: str) -> ProviderPayment:
        """Fetch a payment from the provider; NotFound when it does not exist."""
