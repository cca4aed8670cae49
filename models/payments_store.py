# models/payments_store.py (Postgres / SQLAlchemy)
from __future__ import annotations
import re
from functools import wraps
from typing import List, Optional, Tuple

from sqlalchemy import select, func, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import generate_password_hash, check_password_hash

from models.base import session_scope, init_engine_and_session
from models.schema import (
    User, CatalogItem, Payment, ProcessedEvent, Enrollment, AuditLog, utcnow
)
from models.store import (
    PaymentIntent, CatalogEntry, EnrollmentGrant, ProcessedEventRecord, ApplyResult,
    Decide, StoreUnavailable, STATUSES, COMPLETED, DUPLICATE, UNKNOWN_ORDER, result_state,
)

USERNAME_RX = re.compile(r"^[a-z0-9._-]{3,40}$")

_INTENT_COLS = ("id", "provider", "provider_order_id", "user_id", "item_type", "item_id",
                "amount", "currency", "receipt", "status", "provider_payment_id",
                "failure_reason", "created_at", "updated_at")

_AUDIT_COLS = ("id", "ts", "actor", "actor_role", "request_id", "ip", "method", "path",
               "action", "target_type", "target_id", "outcome", "status", "error_code",
               "extra", "prev_hash", "hash", "signature", "schema_version", "key_id")


def _unavailable_on_db_errors(fn):
    """Database failures that escape a method become StoreUnavailable (retryable)."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"database unavailable: {getattr(e, 'orig', None) or e}") from e
    return wrapper


def _intent_from_row(p: Payment) -> PaymentIntent:
    vals = {c: getattr(p, c) for c in _INTENT_COLS}
    return PaymentIntent(notes=dict(p.notes or {}), **vals)


def _event_from_row(e: ProcessedEvent) -> ProcessedEventRecord:
    return ProcessedEventRecord(
        event_key=e.event_key, source=e.source, event_type=e.event_type,
        outcome=e.outcome, first_seen_at=e.first_seen_at,
        webhook_event_id=e.webhook_event_id, payment_intent_id=e.payment_intent_id,
        payload=e.payload,
    )


class SqlPaymentStore:
    name = "sql"

    @_unavailable_on_db_errors
    def ping(self) -> None:
        engine, _ = init_engine_and_session()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ----- users -----

    @_unavailable_on_db_errors
    def get_user(self, username: str) -> Optional[dict]:
        if not username:
            return None
        with session_scope() as s:
            u = s.get(User, username)
            if not u:
                return None
            return {
                "username": u.username,
                "role": u.role,
                "created_at": u.created_at,
            }

    @_unavailable_on_db_errors
    def create_user(self, username: str, password: str, role: str = "user") -> bool:
        if not username or not password or role not in {"user", "admin"}:
            return False
        if not USERNAME_RX.match(username.strip().lower()):
            return False
        with session_scope() as s:
            if s.get(User, username.strip()):
                return False
            s.add(User(
                username=username.strip(),
                password_hash=generate_password_hash(password),
                role=role,
                created_at=utcnow(),
            ))
        return True

    @_unavailable_on_db_errors
    def verify_password(self, username: str, password: str) -> bool:
        if not username:
            return False
        with session_scope() as s:
            u = s.get(User, username)
            return bool(u and check_password_hash(u.password_hash, password))

    # ----- catalog + grants -----

    @_unavailable_on_db_errors
    def get_catalog_item(self, item_type: str, item_id: str) -> Optional[CatalogEntry]:
        with session_scope() as s:
            it = s.get(CatalogItem, (item_type, item_id))
            if not it:
                return None
            return CatalogEntry(it.item_type, it.item_id, it.title, it.price,
                                it.currency, bool(it.is_published))

    @_unavailable_on_db_errors
    def upsert_catalog_item(self, item: CatalogEntry) -> None:
        with session_scope() as s:
            it = s.get(CatalogItem, (item.item_type, item.item_id))
            if not it:
                it = CatalogItem(item_type=item.item_type, item_id=item.item_id)
            it.title = item.title
            it.price = item.price
            it.currency = item.currency
            it.is_published = item.is_published
            s.add(it)

    @_unavailable_on_db_errors
    def has_enrollment(self, user_id: str, item_type: str, item_id: str) -> bool:
        with session_scope() as s:
            row = s.execute(select(Enrollment.id).where(
                (Enrollment.user_id == user_id) & (Enrollment.item_type == item_type)
                & (Enrollment.item_id == item_id))).first()
            return row is not None

    @_unavailable_on_db_errors
    def list_enrollments(self, user_id: str) -> List[EnrollmentGrant]:
        with session_scope() as s:
            rows = s.execute(select(Enrollment).where(Enrollment.user_id == user_id)
                             .order_by(Enrollment.id)).scalars().all()
            return [EnrollmentGrant(r.user_id, r.item_type, r.item_id,
                                    r.payment_intent_id, r.granted_at) for r in rows]

    # ----- intents -----

    @_unavailable_on_db_errors
    def create_intent(self, *, provider: str, provider_order_id: str, user_id: str,
                      item_type: str, item_id: str, amount: int, currency: str,
                      receipt: Optional[str], notes: Optional[dict]) -> PaymentIntent:
        now = utcnow()
        with session_scope() as s:
            p = Payment(
                provider=provider, provider_order_id=provider_order_id, user_id=user_id,
                item_type=item_type, item_id=item_id, amount=amount, currency=currency,
                receipt=receipt, status="pending", notes=notes or {},
                created_at=now, updated_at=now,
            )
            s.add(p)
            s.flush()
            return _intent_from_row(p)

    def _intent_by_order(self, s, provider_order_id: str, for_update: bool = False):
        q = select(Payment).where(Payment.provider_order_id == provider_order_id)
        if for_update:
            q = q.with_for_update()
        return s.execute(q).scalars().first()

    @_unavailable_on_db_errors
    def get_intent_by_order(self, provider_order_id: str) -> Optional[PaymentIntent]:
        if not provider_order_id:
            return None
        with session_scope() as s:
            p = self._intent_by_order(s, provider_order_id)
            return _intent_from_row(p) if p else None

    @_unavailable_on_db_errors
    def list_intents(self, *, user_id: Optional[str] = None, status: Optional[str] = None,
                     item_type: Optional[str] = None, page: int = 1,
                     limit: int = 10) -> Tuple[List[PaymentIntent], int]:
        conds = []
        if user_id:
            conds.append(Payment.user_id == user_id)
        if status:
            conds.append(Payment.status == status)
        if item_type:
            conds.append(Payment.item_type == item_type)
        with session_scope() as s:
            total = s.execute(select(func.count(Payment.id)).where(*conds)).scalar_one()
            rows = s.execute(
                select(Payment).where(*conds).order_by(Payment.id.desc())
                .offset((page - 1) * limit).limit(limit)
            ).scalars().all()
            return [_intent_from_row(p) for p in rows], int(total)

    @_unavailable_on_db_errors
    def intent_stats(self) -> dict:
        with session_scope() as s:
            counts = dict(s.execute(
                select(Payment.status, func.count(Payment.id)).group_by(Payment.status)).all())
            revenue = s.execute(select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.status == COMPLETED)).scalar_one()
        out = {st: int(counts.get(st, 0)) for st in STATUSES}
        out["total"] = sum(out.values())
        out["total_revenue"] = int(revenue or 0)
        return out

    # ----- idempotency ledger -----

    @_unavailable_on_db_errors
    def has_processed(self, event_key: str) -> bool:
        with session_scope() as s:
            return s.get(ProcessedEvent, event_key) is not None

    @_unavailable_on_db_errors
    def get_processed(self, event_key: str) -> Optional[ProcessedEventRecord]:
        with session_scope() as s:
            e = s.get(ProcessedEvent, event_key)
            return _event_from_row(e) if e else None

    @_unavailable_on_db_errors
    def mark_processed(self, event_key: str, outcome: str, *, source: str, event_type: str,
                       webhook_event_id: Optional[str] = None,
                       payment_intent_id: Optional[int] = None,
                       payload: Optional[dict] = None) -> bool:
        with session_scope() as s:
            s.add(ProcessedEvent(
                event_key=event_key, source=source, event_type=event_type,
                webhook_event_id=webhook_event_id, payment_intent_id=payment_intent_id,
                outcome=outcome, payload=payload, first_seen_at=utcnow(),
            ))
            try:
                s.flush()
            except IntegrityError:
                s.rollback()
                return False
        return True

    @_unavailable_on_db_errors
    def apply_once(self, event_key: str, provider_order_id: str, decide: Decide, *,
                   source: str, event_type: str,
                   webhook_event_id: Optional[str] = None,
                   payload: Optional[dict] = None) -> ApplyResult:
        now = utcnow()
        with session_scope() as s:
            # claim first: the primary key serializes racing deliveries
            claim = ProcessedEvent(
                event_key=event_key, source=source, event_type=event_type,
                webhook_event_id=webhook_event_id, outcome="claimed",
                payload=payload, first_seen_at=now,
            )
            s.add(claim)
            try:
                s.flush()
            except IntegrityError:
                s.rollback()
                p = self._intent_by_order(s, provider_order_id)
                return ApplyResult(DUPLICATE, "duplicate",
                                   intent=_intent_from_row(p) if p else None)

            p = self._intent_by_order(s, provider_order_id, for_update=True)
            if p is None:
                s.rollback()
                return ApplyResult(UNKNOWN_ORDER, "unknown_order")

            t = decide(_intent_from_row(p))
            if t.new_status:
                p.status = t.new_status
                if t.provider_payment_id:
                    p.provider_payment_id = t.provider_payment_id
                if t.failure_reason:
                    p.failure_reason = t.failure_reason
                p.updated_at = now
                s.add(p)

            granted = False
            if t.grant:
                owned = s.execute(select(Enrollment.id).where(
                    (Enrollment.user_id == p.user_id) & (Enrollment.item_type == p.item_type)
                    & (Enrollment.item_id == p.item_id))).first()
                if owned is None:
                    s.add(Enrollment(user_id=p.user_id, item_type=p.item_type, item_id=p.item_id,
                                     payment_intent_id=p.id, granted_at=now))
                    granted = True

            claim.outcome = t.outcome
            claim.payment_intent_id = p.id
            s.flush()
            intent = _intent_from_row(p)

        return ApplyResult(result_state(t), t.outcome, intent=intent, grant_created=granted)

    # ----- audit chain -----

    @_unavailable_on_db_errors
    def append_audit(self, entry: dict) -> None:
        with session_scope() as s:
            s.add(AuditLog(**entry))

    @_unavailable_on_db_errors
    def latest_audit_hash(self) -> str:
        with session_scope() as s:
            row = s.execute(select(AuditLog).order_by(
                AuditLog.id.desc()).limit(1)).scalars().first()
            return row.hash or "" if row else ""

    @_unavailable_on_db_errors
    def audit_rows(self, limit: Optional[int] = None) -> List[dict]:
        with session_scope() as s:
            q = select(AuditLog).order_by(AuditLog.id.asc())
            if limit:
                q = q.limit(int(limit))
            rows = s.execute(q).scalars().all()
            return [{c: getattr(r, c) for c in _AUDIT_COLS} for r in rows]
