"""Result and error types for the membership entitlement engine.

Business-rule rejections are returned as :class:`OperationResult` values.
Caller bugs raise :class:`MembershipLogicError` subclasses before any write,
and infrastructure trouble raises :class:`TransientStoreError` subclasses,
which are safe to retry.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Generic, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

T = TypeVar("T")


class RejectionReason(str, Enum):
    ALREADY_OPEN = "already_open"
    NOT_PENDING = "not_pending"
    MEMBER_INACTIVE = "member_inactive"
    PAST_CUTOFF = "past_cutoff"
    NO_OPEN_SESSION = "no_open_session"
    DAILY_EXCEEDED = "daily_exceeded"
    HOURLY_EXCEEDED = "hourly_exceeded"
    TOTAL_EXCEEDED = "total_exceeded"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_CONFIRMED = "already_confirmed"
    SESSION_MISMATCH = "session_mismatch"
    MEMBER_NOT_FOUND = "member_not_found"
    SESSION_NOT_FOUND = "session_not_found"
    RECORD_NOT_FOUND = "record_not_found"

    @property
    def is_not_found(self) -> bool:
        return self in _NOT_FOUND_REASONS


_NOT_FOUND_REASONS = frozenset(
    {
        RejectionReason.MEMBER_NOT_FOUND,
        RejectionReason.SESSION_NOT_FOUND,
        RejectionReason.RECORD_NOT_FOUND,
    }
)


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of an engine operation: either a value or a typed rejection."""

    success: bool
    value: Optional[T] = None
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def reject(cls, reason: RejectionReason, message: str) -> "OperationResult[T]":
        return cls(success=False, reason=reason, message=message)

    def unwrap(self) -> T:
        if not self.success:
            raise RejectedOperationError(self.reason, self.message)
        return self.value  # type: ignore[return-value]


class MembershipEngineError(Exception):
    """Base error for the membership engine."""


class RejectedOperationError(MembershipEngineError):
    """Raised by :meth:`OperationResult.unwrap` on a rejected result."""

    def __init__(self, reason: Optional[RejectionReason], message: Optional[str]) -> None:
        super().__init__(message or (reason.value if reason else "rejected"))
        self.reason = reason


class MembershipLogicError(MembershipEngineError, ValueError):
    """Invalid input supplied by the caller; nothing was written."""


class InvalidLedgerAmountError(MembershipLogicError):
    pass


class InvalidQuantityError(MembershipLogicError):
    pass


class InvalidDurationError(MembershipLogicError):
    pass


class TransientStoreError(MembershipEngineError):
    """Infrastructure failure; the operation may be retried with backoff."""


class ConcurrentUpdateError(TransientStoreError):
    pass


class StoreUnavailableError(TransientStoreError):
    pass


class DeadlineExceededError(TransientStoreError):
    pass


@asynccontextmanager
async def translate_store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise SQLAlchemy and timeout failures as transient engine errors."""

    try:
        yield
    except (StaleDataError, IntegrityError) as exc:
        raise ConcurrentUpdateError(f"{operation}: concurrent update detected") from exc
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailableError(f"{operation}: store unavailable") from exc
    except asyncio.TimeoutError as exc:
        raise DeadlineExceededError(f"{operation}: deadline exceeded") from exc


async def within_deadline(awaitable: Awaitable[T], *, timeout: float | None, operation: str) -> T:
    """Await ``awaitable`` but abort with :class:`DeadlineExceededError` after ``timeout`` seconds."""

    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise DeadlineExceededError(f"{operation}: exceeded {timeout:.1f}s deadline") from exc


__all__ = [
    "ConcurrentUpdateError",
    "DeadlineExceededError",
    "InvalidDurationError",
    "InvalidLedgerAmountError",
    "InvalidQuantityError",
    "MembershipEngineError",
    "MembershipLogicError",
    "OperationResult",
    "RejectedOperationError",
    "RejectionReason",
    "StoreUnavailableError",
    "TransientStoreError",
    "translate_store_errors",
    "within_deadline",
]
