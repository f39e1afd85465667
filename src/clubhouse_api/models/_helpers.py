"""Column helpers shared by the membership models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Type

from sqlalchemy import Enum as SqlEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_column_type(enum_cls: Type[Enum], name: str) -> SqlEnum:
    """Persist enum *values* (lower-case wire strings) rather than member names."""

    return SqlEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
