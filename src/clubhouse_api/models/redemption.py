"""Per-session redemption aggregate and its items."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from clubhouse_api.db.base import Base
from clubhouse_api.models._helpers import enum_column_type, utcnow


class RedemptionItemStatus(str, Enum):
    PENDING_SELECTION = "pending-selection"
    COMPLETED = "completed"


class RedemptionOrigin(str, Enum):
    MEMBER_REQUEST = "member_request"
    ADMIN_ASSIGN = "admin_assign"


class RedemptionRecord(Base):
    """Aggregate root keyed by visit session; every append bumps ``version``."""

    __tablename__ = "redemption_records"

    session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("visit_sessions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    item_count = Column(Integer, nullable=False, default=0, server_default="0")
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

    items = relationship(
        "RedemptionItem",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="RedemptionItem.position",
    )


class RedemptionItem(Base):
    __tablename__ = "redemption_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    session_id = Column(
        UUID(as_uuid=True),
        ForeignKey("redemption_records.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id = Column(UUID(as_uuid=True), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    status = Column(
        enum_column_type(RedemptionItemStatus, "redemption_item_status"),
        nullable=False,
        default=RedemptionItemStatus.PENDING_SELECTION,
        index=True,
    )
    origin = Column(
        enum_column_type(RedemptionOrigin, "redemption_origin"),
        nullable=False,
        default=RedemptionOrigin.MEMBER_REQUEST,
    )
    quantity = Column(Integer, nullable=False)
    product_ref = Column(String, nullable=True)
    product_name = Column(String, nullable=True)
    day_key = Column(String(10), nullable=False, index=True)
    hour_key = Column(String(13), nullable=False, index=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=False)
    requested_by = Column(String, nullable=True)
    confirmed_by = Column(String, nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)

    record = relationship("RedemptionRecord", back_populates="items")
