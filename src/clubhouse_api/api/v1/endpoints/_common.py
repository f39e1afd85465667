"""Helpers shared by the membership endpoint modules."""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.core.settings import settings
from clubhouse_api.services.membership.errors import translate_store_errors, within_deadline
from clubhouse_api.services.membership.periods import ensure_utc

T = TypeVar("T")


def aware(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


async def bounded(awaitable: Awaitable[T], operation: str) -> T:
    """Apply the configured store deadline to an engine call."""

    return await within_deadline(
        awaitable,
        timeout=settings.store_operation_timeout_seconds,
        operation=operation,
    )


async def commit(db: AsyncSession, operation: str) -> None:
    """Commit the request's unit of work; lock and version conflicts surface as transient errors."""

    async with translate_store_errors(f"{operation}.commit"):
        await db.commit()
