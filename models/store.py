# models/store.py
"""
Storage interface for the payment flow + the plain records it hands out.

Two backends implement PaymentStore:
  - models.payments_store.SqlPaymentStore   durable (SQLAlchemy)
  - models.memory_store.MemoryPaymentStore  transient, in-process

Callers only ever talk to the protocol; services.data_sources picks the
backend once when the app starts.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
REFUNDED = "refunded"
STATUSES = (PENDING, COMPLETED, FAILED, REFUNDED)

ITEM_TYPES = ("course", "book", "live_class")

# ApplyResult.state
APPLIED = "applied"
DUPLICATE = "duplicate"
UNKNOWN_ORDER = "unknown_order"
REJECTED = "rejected"
NOOP = "noop"


class StoreUnavailable(RuntimeError):
    """The backing store could not be reached; the caller may retry."""


@dataclass
class PaymentIntent:
    id: int
    provider: str
    provider_order_id: str
    user_id: str
    item_type: str
    item_id: str
    amount: int                   # minor units
    currency: str
    receipt: Optional[str]
    status: str
    provider_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    notes: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CatalogEntry:
    item_type: str
    item_id: str
    title: str
    price: int                    # minor units
    currency: str = "INR"
    is_published: bool = True


@dataclass
class EnrollmentGrant:
    user_id: str
    item_type: str
    item_id: str
    payment_intent_id: Optional[int]
    granted_at: datetime


@dataclass
class ProcessedEventRecord:
    event_key: str
    source: str                   # 'webhook' | 'verify'
    event_type: str
    outcome: str
    first_seen_at: datetime
    webhook_event_id: Optional[str] = None
    payment_intent_id: Optional[int] = None
    payload: Optional[Dict[str, Any]] = None


@dataclass
class Transition:
    """
    What the Applying step should do to an intent.
    new_status=None means "leave the intent alone"; outcome is what the
    ledger row records either way.
    """
    new_status: Optional[str]
    outcome: str
    provider_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    grant: bool = False

    @property
    def rejected(self) -> bool:
        return self.outcome.startswith("rejected:")


@dataclass
class ApplyResult:
    state: str                    # APPLIED | DUPLICATE | UNKNOWN_ORDER | REJECTED | NOOP
    outcome: str
    intent: Optional[PaymentIntent] = None
    grant_created: bool = False


Decide = Callable[[PaymentIntent], Transition]


def result_state(t: Transition) -> str:
    if t.rejected:
        return REJECTED
    return APPLIED if t.new_status else NOOP


class PaymentStore(Protocol):
    name: str

    def ping(self) -> None:
        """Raise StoreUnavailable if the backend cannot serve requests."""

    # users
    def get_user(self, username: str) -> Optional[dict]: ...
    def create_user(self, username: str, password: str,
                    role: str = "user") -> bool: ...

    def verify_password(self, username: str, password: str) -> bool: ...

    # catalog + grants
    def get_catalog_item(self, item_type: str,
                         item_id: str) -> Optional[CatalogEntry]: ...

    def upsert_catalog_item(self, item: CatalogEntry) -> None: ...
    def has_enrollment(self, user_id: str, item_type: str,
                       item_id: str) -> bool: ...

    def list_enrollments(self, user_id: str) -> List[EnrollmentGrant]: ...

    # intents
    def create_intent(self, *, provider: str, provider_order_id: str, user_id: str,
                      item_type: str, item_id: str, amount: int, currency: str,
                      receipt: Optional[str], notes: Optional[dict]) -> PaymentIntent: ...

    def get_intent_by_order(
        self, provider_order_id: str) -> Optional[PaymentIntent]: ...

    def list_intents(self, *, user_id: Optional[str] = None, status: Optional[str] = None,
                     item_type: Optional[str] = None, page: int = 1,
                     limit: int = 10) -> Tuple[List[PaymentIntent], int]: ...

    def intent_stats(self) -> dict: ...

    # idempotency ledger
    def has_processed(self, event_key: str) -> bool: ...

    def get_processed(
        self, event_key: str) -> Optional[ProcessedEventRecord]: ...

    def mark_processed(self, event_key: str, outcome: str, *, source: str, event_type: str,
                       webhook_event_id: Optional[str] = None,
                       payment_intent_id: Optional[int] = None,
                       payload: Optional[dict] = None) -> bool:
        """
        Atomically record event_key. True for the single caller that inserted
        the row, False if it already existed.
        """

    def apply_once(self, event_key: str, provider_order_id: str, decide: Decide, *,
                   source: str, event_type: str,
                   webhook_event_id: Optional[str] = None,
                   payload: Optional[dict] = None) -> ApplyResult:
        """
        Claim event_key, load the intent for provider_order_id, ask decide()
        what to do, then commit transition + grant + ledger row together.
        Unknown orders leave no trace.
        """

    # audit chain
    def append_audit(self, entry: dict) -> None: ...
    def latest_audit_hash(self) -> str: ...
    def audit_rows(self, limit: Optional[int] = None) -> List[dict]: ...
