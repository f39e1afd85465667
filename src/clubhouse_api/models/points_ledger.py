"""Append-only points ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from clubhouse_api.db.base import Base
from clubhouse_api.models._helpers import enum_column_type, utcnow


class LedgerDirection(str, Enum):
    EARN = "earn"
    SPEND = "spend"


class LedgerSource(str, Enum):
    REGISTRATION = "registration"
    PURCHASE = "purchase"
    EVENT = "event"
    VISIT = "visit"
    MEMBERSHIP_FEE = "membership_fee"
    RELOAD = "reload"
    ADMIN = "admin"
    OTHER = "other"


class PointsLedgerEntry(Base):
    """Immutable audit row for one balance change."""

    __tablename__ = "points_ledger_entries"
    __table_args__ = (
        UniqueConstraint("member_id", "sequence", name="uq_points_ledger_entries_member_sequence"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    direction = Column(enum_column_type(LedgerDirection, "ledger_direction"), nullable=False)
    amount = Column(Integer, nullable=False)
    source = Column(enum_column_type(LedgerSource, "ledger_source"), nullable=False)
    related_id = Column(String, nullable=True, index=True)
    resulting_balance = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == LedgerDirection.EARN else -self.amount
