"""Club member aggregate and annual membership fee records."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from clubhouse_api.db.base import Base
from clubhouse_api.models._helpers import enum_column_type, utcnow


class MemberStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Member(Base):
    """Identity plus the entitlement counters owned by the membership engine.

    ``point_balance``, ``status`` and ``total_visit_hours`` are only written by
    the ledger, visit tracker and billing services.
    """

    __tablename__ = "members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    display_name = Column(String, nullable=False)
    email = Column(String, nullable=True, unique=True, index=True)
    status = Column(
        enum_column_type(MemberStatus, "member_status"),
        nullable=False,
        default=MemberStatus.INACTIVE,
        server_default=MemberStatus.INACTIVE.value,
    )
    point_balance = Column(Integer, nullable=False, default=0, server_default="0")
    total_visit_hours = Column(Float, nullable=False, default=0.0, server_default="0")
    visit_hours_period_start = Column(DateTime(timezone=True), nullable=True)
    current_session_id = Column(UUID(as_uuid=True), nullable=True)
    last_check_in_at = Column(DateTime(timezone=True), nullable=True)
    renewal_waiver_expires_at = Column(DateTime(timezone=True), nullable=True)
    redemption_sequence = Column(Integer, nullable=False, default=0, server_default="0")
    version = Column(Integer, nullable=False, default=1, server_default="1")
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    fee_records = relationship(
        "MembershipFeeRecord",
        back_populates="member",
        cascade="all, delete-orphan",
        order_by="MembershipFeeRecord.due_date",
    )


class FeeRenewalType(str, Enum):
    INITIAL = "initial"
    RENEWAL = "renewal"


class FeeRecordStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class MembershipFeeRecord(Base):
    """One annual fee obligation; paying it schedules the next one."""

    __tablename__ = "membership_fee_records"
    __table_args__ = (
        UniqueConstraint("member_id", "due_date", name="uq_membership_fee_records_member_due"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    renewal_type = Column(
        enum_column_type(FeeRenewalType, "fee_renewal_type"),
        nullable=False,
        default=FeeRenewalType.INITIAL,
    )
    previous_due_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        enum_column_type(FeeRecordStatus, "fee_record_status"),
        nullable=False,
        default=FeeRecordStatus.PENDING,
        server_default=FeeRecordStatus.PENDING.value,
        index=True,
    )
    deducted_at = Column(DateTime(timezone=True), nullable=True)
    ledger_entry_id = Column(UUID(as_uuid=True), ForeignKey("points_ledger_entries.id"), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    member = relationship("Member", back_populates="fee_records")
