# models/schema.py
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import (
    JSON, Boolean, PrimaryKeyConstraint, String, Text, Integer, DateTime,
    CheckConstraint, UniqueConstraint, Index
)
from models.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- USERS


class User(Base):
    __tablename__ = "users"
    username: Mapped[str] = mapped_column(String, primary_key=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(
        String, nullable=False)  # ('admin','user')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )


# --- CATALOG (read-only view of purchasable content)

class CatalogItem(Base):
    __tablename__ = "catalog_items"
    item_type: Mapped[str] = mapped_column(
        String(16), nullable=False)  # 'course'|'book'|'live_class'
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[int] = mapped_column(
        Integer, nullable=False)  # minor units (paise)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="INR")
    is_published: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False)

    __table_args__ = (
        PrimaryKeyConstraint("item_type", "item_id", name="pk_catalog_items"),
        CheckConstraint("item_type in ('course','book','live_class')",
                        name="ck_catalog_items_type"),
        CheckConstraint("price >= 0", name="ck_catalog_items_price_ge_0"),
    )


# --- PAYMENTS

class Payment(Base):
    __tablename__ = "payment_intents"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    provider_order_id: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)  # 3-letter
    receipt: Mapped[str | None] = mapped_column(String(40))
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending")
    provider_payment_id: Mapped[str | None] = mapped_column(String)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_intents_amount_gt_0"),
        CheckConstraint(
            "status in ('pending','completed','failed','refunded')", name="ck_payment_intents_status"),
        CheckConstraint("item_type in ('course','book','live_class')",
                        name="ck_payment_intents_item_type"),
        UniqueConstraint("provider_order_id",
                         name="uq_payment_intents_provider_order_id"),
    )


Index("idx_payment_intents_user", Payment.user_id)
Index("idx_payment_intents_status", Payment.status)


class ProcessedEvent(Base):
    """Idempotency ledger. The primary key is the only dedup signal."""
    __tablename__ = "processed_events"
    event_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    source: Mapped[str] = mapped_column(
        String(16), nullable=False)  # 'webhook'|'verify'
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_event_id: Mapped[str | None] = mapped_column(String(128))
    payment_intent_id: Mapped[int | None] = mapped_column(
        Integer)  # intended FK to payment_intents.id (nullable)
    outcome: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        CheckConstraint("source in ('webhook','verify')",
                        name="ck_processed_events_source"),
    )


class Enrollment(Base):
    __tablename__ = "enrollments"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_intent_id: Mapped[int | None] = mapped_column(Integer)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)
    __table_args__ = (
        UniqueConstraint("user_id", "item_type", "item_id",
                         name="uq_enrollments_user_item"),
    )


# --- AUDIT

class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False)

    # Actor & request context
    actor: Mapped[str | None] = mapped_column(String(128))
    # 'admin'|'user'|...
    actor_role: Mapped[str | None] = mapped_column(String(32))
    request_id: Mapped[str | None] = mapped_column(
        String(64))     # e.g., per-request UUID
    ip: Mapped[str | None] = mapped_column(
        String(64))             # anonymized if configured
    method: Mapped[str | None] = mapped_column(String(8))
    path: Mapped[str | None] = mapped_column(String(512))

    # Event semantics
    action: Mapped[str] = mapped_column(
        String(64), nullable=False)  # controlled vocabulary
    target_type: Mapped[str | None] = mapped_column(String(32))
    target_id: Mapped[str | None] = mapped_column(String(128))
    outcome: Mapped[str | None] = mapped_column(
        String(16))          # 'success'|'failure'
    status: Mapped[int | None] = mapped_column(Integer)
    error_code: Mapped[str | None] = mapped_column(String(64))

    # Structured details (small, redacted)
    extra: Mapped[dict | None] = mapped_column(JSON)

    # Tamper-evident chain
    prev_hash: Mapped[str | None] = mapped_column(String(128))
    hash: Mapped[str | None] = mapped_column(String(128))
    signature: Mapped[str | None] = mapped_column(
        String(128))       # HMAC(hash, SECRET)
    schema_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1)
    key_id: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "outcome in ('success','failure','blocked','noop') or outcome is null", name="ck_audit_outcome"),
        Index("idx_audit_ts", "ts"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_target", "target_type", "target_id"),
    )
