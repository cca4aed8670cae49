"""initial payment schema

Revision ID: a1c3e5f70921
Revises:
Create Date: 2026-10-19 09:12:44.118203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f70921'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("username", sa.String(), primary_key=True),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("role in ('admin','user')", name="ck_users_role"),
    )

    op.create_table(
        "catalog_items",
        sa.Column("item_type", sa.String(16), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("item_type", "item_id", name="pk_catalog_items"),
        sa.CheckConstraint("item_type in ('course','book','live_class')",
                           name="ck_catalog_items_type"),
        sa.CheckConstraint("price >= 0", name="ck_catalog_items_price_ge_0"),
    )

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("provider_order_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("item_type", sa.String(16), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("receipt", sa.String(40)),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("provider_payment_id", sa.String()),
        sa.Column("failure_reason", sa.Text()),
        sa.Column("notes", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_payment_intents_amount_gt_0"),
        sa.CheckConstraint("status in ('pending','completed','failed','refunded')",
                           name="ck_payment_intents_status"),
        sa.CheckConstraint("item_type in ('course','book','live_class')",
                           name="ck_payment_intents_item_type"),
        sa.UniqueConstraint("provider_order_id",
                            name="uq_payment_intents_provider_order_id"),
    )
    op.create_index("idx_payment_intents_user", "payment_intents", ["user_id"])
    op.create_index("idx_payment_intents_status", "payment_intents", ["status"])

    op.create_table(
        "processed_events",
        sa.Column("event_key", sa.String(128), primary_key=True),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("webhook_event_id", sa.String(128)),
        sa.Column("payment_intent_id", sa.Integer()),
        sa.Column("outcome", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON()),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("source in ('webhook','verify')",
                           name="ck_processed_events_source"),
    )

    op.create_table(
        "enrollments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("item_type", sa.String(16), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("payment_intent_id", sa.Integer()),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "item_type", "item_id",
                            name="uq_enrollments_user_item"),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor", sa.String(128)),
        sa.Column("actor_role", sa.String(32)),
        sa.Column("request_id", sa.String(64)),
        sa.Column("ip", sa.String(64)),
        sa.Column("method", sa.String(8)),
        sa.Column("path", sa.String(512)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("target_type", sa.String(32)),
        sa.Column("target_id", sa.String(128)),
        sa.Column("outcome", sa.String(16)),
        sa.Column("status", sa.Integer()),
        sa.Column("error_code", sa.String(64)),
        sa.Column("extra", sa.JSON()),
        sa.Column("prev_hash", sa.String(128)),
        sa.Column("hash", sa.String(128)),
        sa.Column("signature", sa.String(128)),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("key_id", sa.String(16)),
        sa.CheckConstraint(
            "outcome in ('success','failure','blocked','noop') or outcome is null",
            name="ck_audit_outcome"),
    )
    op.create_index("idx_audit_ts", "audit_log", ["ts"])
    op.create_index("idx_audit_action", "audit_log", ["action"])
    op.create_index("idx_audit_target", "audit_log", ["target_type", "target_id"])


def downgrade():
    op.drop_index("idx_audit_target", table_name="audit_log")
    op.drop_index("idx_audit_action", table_name="audit_log")
    op.drop_index("idx_audit_ts", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_table("enrollments")
    op.drop_table("processed_events")
    op.drop_index("idx_payment_intents_status", table_name="payment_intents")
    op.drop_index("idx_payment_intents_user", table_name="payment_intents")
    op.drop_table("payment_intents")
    op.drop_table("catalog_items")
    op.drop_table("users")
