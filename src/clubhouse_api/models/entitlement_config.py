"""Persisted, admin-editable entitlement configuration documents."""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, String, func

from clubhouse_api.db.base import Base
from clubhouse_api.models._helpers import utcnow


class EntitlementConfig(Base):
    __tablename__ = "entitlement_configs"

    key = Column(String, primary_key=True)
    payload = Column(JSON, nullable=False, default=dict)
    updated_by = Column(String, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )
