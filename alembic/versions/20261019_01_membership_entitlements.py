"""Membership entitlement and billing tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)
NOW = sa.text("CURRENT_TIMESTAMP")

member_status = sa.Enum("active", "inactive", name="member_status")
ledger_direction = sa.Enum("earn", "spend", name="ledger_direction")
ledger_source = sa.Enum(
    "registration",
    "purchase",
    "event",
    "visit",
    "membership_fee",
    "reload",
    "admin",
    "other",
    name="ledger_source",
)
fee_renewal_type = sa.Enum("initial", "renewal", name="fee_renewal_type")
fee_record_status = sa.Enum("pending", "paid", "failed", name="fee_record_status")
visit_session_status = sa.Enum("pending", "completed", name="visit_session_status")
redemption_item_status = sa.Enum("pending-selection", "completed", name="redemption_item_status")
redemption_origin = sa.Enum("member_request", "admin_assign", name="redemption_origin")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("status", member_status, nullable=False, server_default="inactive"),
        sa.Column("point_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_visit_hours", sa.Float(), nullable=False, server_default="0"),
        sa.Column("visit_hours_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_session_id", UUID, nullable=True),
        sa.Column("last_check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_waiver_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redemption_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_members_email", "members", ["email"], unique=True)

    op.create_table(
        "points_ledger_entries",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("member_id", UUID, nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("direction", ledger_direction, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("source", ledger_source, nullable=False),
        sa.Column("related_id", sa.String(), nullable=True),
        sa.Column("resulting_balance", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("member_id", "sequence", name="uq_points_ledger_entries_member_sequence"),
    )
    op.create_index("ix_points_ledger_entries_member_id", "points_ledger_entries", ["member_id"])
    op.create_index("ix_points_ledger_entries_related_id", "points_ledger_entries", ["related_id"])

    op.create_table(
        "membership_fee_records",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("member_id", UUID, nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("renewal_type", fee_renewal_type, nullable=False),
        sa.Column("previous_due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", fee_record_status, nullable=False, server_default="pending"),
        sa.Column("deducted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_entry_id", UUID, nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ledger_entry_id"], ["points_ledger_entries.id"]),
        sa.UniqueConstraint("member_id", "due_date", name="uq_membership_fee_records_member_due"),
    )
    op.create_index("ix_membership_fee_records_member_id", "membership_fee_records", ["member_id"])
    op.create_index("ix_membership_fee_records_due_date", "membership_fee_records", ["due_date"])
    op.create_index("ix_membership_fee_records_status", "membership_fee_records", ["status"])

    op.create_table(
        "visit_sessions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("member_id", UUID, nullable=False),
        sa.Column("status", visit_session_status, nullable=False),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_in_by", sa.String(), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_by", sa.String(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("duration_hours", sa.Float(), nullable=True),
        sa.Column("hourly_rate", sa.Integer(), nullable=True),
        sa.Column("points_charged", sa.Integer(), nullable=True),
        sa.Column("is_waived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("forced", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("ledger_entry_id", UUID, nullable=True),
        sa.Column("redemptions", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ledger_entry_id"], ["points_ledger_entries.id"]),
    )
    op.create_index("ix_visit_sessions_member_id", "visit_sessions", ["member_id"])
    op.create_index("ix_visit_sessions_status", "visit_sessions", ["status"])
    op.create_index("ix_visit_sessions_check_in_at", "visit_sessions", ["check_in_at"])
    op.create_index(
        "uq_visit_sessions_member_pending",
        "visit_sessions",
        ["member_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "redemption_records",
        sa.Column("session_id", UUID, primary_key=True),
        sa.Column("member_id", UUID, nullable=False),
        sa.Column("item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["session_id"], ["visit_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_redemption_records_member_id", "redemption_records", ["member_id"])

    op.create_table(
        "redemption_items",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("session_id", UUID, nullable=False),
        sa.Column("member_id", UUID, nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", redemption_item_status, nullable=False),
        sa.Column("origin", redemption_origin, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("product_ref", sa.String(), nullable=True),
        sa.Column("product_name", sa.String(), nullable=True),
        sa.Column("day_key", sa.String(length=10), nullable=False),
        sa.Column("hour_key", sa.String(length=13), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requested_by", sa.String(), nullable=True),
        sa.Column("confirmed_by", sa.String(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["redemption_records.session_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_redemption_items_session_id", "redemption_items", ["session_id"])
    op.create_index("ix_redemption_items_member_id", "redemption_items", ["member_id"])
    op.create_index("ix_redemption_items_status", "redemption_items", ["status"])
    op.create_index("ix_redemption_items_day_key", "redemption_items", ["day_key"])
    op.create_index("ix_redemption_items_hour_key", "redemption_items", ["hour_key"])

    op.create_table(
        "entitlement_configs",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("entitlement_configs")
    op.drop_table("redemption_items")
    op.drop_table("redemption_records")
    op.drop_index("uq_visit_sessions_member_pending", table_name="visit_sessions")
    op.drop_table("visit_sessions")
    op.drop_table("membership_fee_records")
    op.drop_table("points_ledger_entries")
    op.drop_table("members")

    bind = op.get_bind()
    for enum_type in (
        redemption_origin,
        redemption_item_status,
        visit_session_status,
        fee_record_status,
        fee_renewal_type,
        ledger_source,
        ledger_direction,
        member_status,
    ):
        enum_type.drop(bind, checkfirst=True)
