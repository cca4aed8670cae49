# models/memory_store.py
"""
Transient, in-process PaymentStore. Used when the database is not available
(PAYMENTS_DATA_SOURCE=fallback, or auto with an unreachable DATABASE_URL)
and in unit tests. Nothing survives a restart.

A single lock guards every mutation; nothing inside it does network I/O.
"""

from __future__ import annotations
import copy
import threading
from dataclasses import replace
from itertools import count
from typing import Dict, List, Optional, Tuple

from werkzeug.security import generate_password_hash, check_password_hash

from models.schema import utcnow
from models.payments_store import USERNAME_RX
from models.store import (
    PaymentIntent, CatalogEntry, EnrollmentGrant, ProcessedEventRecord, ApplyResult,
    Decide, STATUSES, COMPLETED, DUPLICATE, UNKNOWN_ORDER, result_state,
)


class MemoryPaymentStore:
    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, dict] = {}
        self._catalog: Dict[Tuple[str, str], CatalogEntry] = {}
        self._intents: Dict[int, PaymentIntent] = {}
        self._by_order: Dict[str, int] = {}
        self._ledger: Dict[str, ProcessedEventRecord] = {}
        self._grants: Dict[Tuple[str, str, str], EnrollmentGrant] = {}
        self._audit: List[dict] = []
        self._ids = count(1)

    def ping(self) -> None:
        return None

    def clear(self) -> None:
        with self._lock:
            for bucket in (self._users, self._catalog, self._intents, self._by_order,
                           self._ledger, self._grants):
                bucket.clear()
            self._audit.clear()
            self._ids = count(1)

    # ----- users -----

    def get_user(self, username: str) -> Optional[dict]:
        u = self._users.get(username or "")
        if not u:
            return None
        return {"username": u["username"], "role": u["role"], "created_at": u["created_at"]}

    def create_user(self, username: str, password: str, role: str = "user") -> bool:
        if not username or not password or role not in {"user", "admin"}:
            return False
        if not USERNAME_RX.match(username.strip().lower()):
            return False
        with self._lock:
            if username.strip() in self._users:
                return False
            self._users[username.strip()] = {
                "username": username.strip(),
                "password_hash": generate_password_hash(password),
                "role": role,
                "created_at": utcnow(),
            }
        return True

    def verify_password(self, username: str, password: str) -> bool:
        u = self._users.get(username or "")
        return bool(u and check_password_hash(u["password_hash"], password))

    # ----- catalog + grants -----

    def get_catalog_item(self, item_type: str, item_id: str) -> Optional[CatalogEntry]:
        it = self._catalog.get((item_type, item_id))
        return replace(it) if it else None

    def upsert_catalog_item(self, item: CatalogEntry) -> None:
        with self._lock:
            self._catalog[(item.item_type, item.item_id)] = replace(item)

    def has_enrollment(self, user_id: str, item_type: str, item_id: str) -> bool:
        return (user_id, item_type, item_id) in self._grants

    def list_enrollments(self, user_id: str) -> List[EnrollmentGrant]:
        with self._lock:
            return [replace(g) for k, g in self._grants.items() if k[0] == user_id]

    # ----- intents -----

    def create_intent(self, *, provider: str, provider_order_id: str, user_id: str,
                      item_type: str, item_id: str, amount: int, currency: str,
                      receipt: Optional[str], notes: Optional[dict]) -> PaymentIntent:
        now = utcnow()
        with self._lock:
            if provider_order_id in self._by_order:
                raise ValueError(f"duplicate provider order id: {provider_order_id}")
            pid = next(self._ids)
            intent = PaymentIntent(
                id=pid, provider=provider, provider_order_id=provider_order_id,
                user_id=user_id, item_type=item_type, item_id=item_id, amount=amount,
                currency=currency, receipt=receipt, status="pending",
                notes=dict(notes or {}), created_at=now, updated_at=now,
            )
            self._intents[pid] = intent
            self._by_order[provider_order_id] = pid
            return copy.deepcopy(intent)

    def _intent_by_order(self, provider_order_id: str) -> Optional[PaymentIntent]:
        pid = self._by_order.get(provider_order_id or "")
        return self._intents.get(pid) if pid is not None else None

    def get_intent_by_order(self, provider_order_id: str) -> Optional[PaymentIntent]:
        with self._lock:
            p = self._intent_by_order(provider_order_id)
            return copy.deepcopy(p) if p else None

    def list_intents(self, *, user_id: Optional[str] = None, status: Optional[str] = None,
                     item_type: Optional[str] = None, page: int = 1,
                     limit: int = 10) -> Tuple[List[PaymentIntent], int]:
        with self._lock:
            rows = [p for p in self._intents.values()
                    if (not user_id or p.user_id == user_id)
                    and (not status or p.status == status)
                    and (not item_type or p.item_type == item_type)]
        rows.sort(key=lambda p: p.id, reverse=True)
        start = (page - 1) * limit
        return [copy.deepcopy(p) for p in rows[start:start + limit]], len(rows)

    def intent_stats(self) -> dict:
        with self._lock:
            out = {st: 0 for st in STATUSES}
            revenue = 0
            for p in self._intents.values():
                out[p.status] += 1
                if p.status == COMPLETED:
                    revenue += p.amount
        out["total"] = sum(out.values())
        out["total_revenue"] = revenue
        return out

    # ----- idempotency ledger -----

    def has_processed(self, event_key: str) -> bool:
        return event_key in self._ledger

    def get_processed(self, event_key: str) -> Optional[ProcessedEventRecord]:
        e = self._ledger.get(event_key)
        return replace(e) if e else None

    def mark_processed(self, event_key: str, outcome: str, *, source: str, event_type: str,
                       webhook_event_id: Optional[str] = None,
                       payment_intent_id: Optional[int] = None,
                       payload: Optional[dict] = None) -> bool:
        with self._lock:
            if event_key in self._ledger:
                return False
            self._ledger[event_key] = ProcessedEventRecord(
                event_key=event_key, source=source, event_type=event_type, outcome=outcome,
                first_seen_at=utcnow(), webhook_event_id=webhook_event_id,
                payment_intent_id=payment_intent_id, payload=copy.deepcopy(payload),
            )
            return True

    def apply_once(self, event_key: str, provider_order_id: str, decide: Decide, *,
                   source: str, event_type: str,
                   webhook_event_id: Optional[str] = None,
                   payload: Optional[dict] = None) -> ApplyResult:
        with self._lock:
            p = self._intent_by_order(provider_order_id)
            if event_key in self._ledger:
                return ApplyResult(DUPLICATE, "duplicate",
                                   intent=copy.deepcopy(p) if p else None)
            if p is None:
                return ApplyResult(UNKNOWN_ORDER, "unknown_order")

            now = utcnow()
            # decide() works on a copy so a raise leaves the intent untouched
            t = decide(copy.deepcopy(p))
            if t.new_status:
                p.status = t.new_status
                if t.provider_payment_id:
                    p.provider_payment_id = t.provider_payment_id
                if t.failure_reason:
                    p.failure_reason = t.failure_reason
                p.updated_at = now

            granted = False
            key = (p.user_id, p.item_type, p.item_id)
            if t.grant and key not in self._grants:
                self._grants[key] = EnrollmentGrant(p.user_id, p.item_type, p.item_id, p.id, now)
                granted = True

            self._ledger[event_key] = ProcessedEventRecord(
                event_key=event_key, source=source, event_type=event_type, outcome=t.outcome,
                first_seen_at=now, webhook_event_id=webhook_event_id,
                payment_intent_id=p.id, payload=copy.deepcopy(payload),
            )
            return ApplyResult(result_state(t), t.outcome, intent=copy.deepcopy(p),
                               grant_created=granted)

    # ----- audit chain -----

    def append_audit(self, entry: dict) -> None:
        with self._lock:
            row = dict(entry)
            row["id"] = len(self._audit) + 1
            self._audit.append(row)

    def latest_audit_hash(self) -> str:
        with self._lock:
            return (self._audit[-1].get("hash") or "") if self._audit else ""

    def audit_rows(self, limit: Optional[int] = None) -> List[dict]:
        with self._lock:
            rows = [dict(r) for r in self._audit]
        return rows[: int(limit)] if limit else rows
