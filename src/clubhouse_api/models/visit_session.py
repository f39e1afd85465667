"""Visit session (check-in to check-out) records."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import UUID

from clubhouse_api.db.base import Base
from clubhouse_api.models._helpers import enum_column_type, utcnow


class VisitSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class VisitSession(Base):
    """A single presence interval; ``redemptions`` mirrors the redemption aggregate for display."""

    __tablename__ = "visit_sessions"
    __table_args__ = (
        Index(
            "uq_visit_sessions_member_pending",
            "member_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(
        enum_column_type(VisitSessionStatus, "visit_session_status"),
        nullable=False,
        default=VisitSessionStatus.PENDING,
        index=True,
    )
    check_in_at = Column(DateTime(timezone=True), nullable=False, index=True)
    check_in_by = Column(String, nullable=True)
    check_out_at = Column(DateTime(timezone=True), nullable=True)
    check_out_by = Column(String, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    duration_hours = Column(Float, nullable=True)
    hourly_rate = Column(Integer, nullable=True)
    points_charged = Column(Integer, nullable=True)
    is_waived = Column(Boolean, nullable=False, default=False, server_default="false")
    forced = Column(Boolean, nullable=False, default=False, server_default="false")
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("points_ledger_entries.id"), nullable=True)
    redemptions = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
