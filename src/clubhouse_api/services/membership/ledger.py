"""Points ledger: the only path that changes a member's point balance."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.models.member import Member
from clubhouse_api.models.points_ledger import LedgerDirection, LedgerSource, PointsLedgerEntry
from clubhouse_api.observability.membership import MembershipObservabilityStore, get_membership_store
from clubhouse_api.services.membership.errors import (
    InvalidLedgerAmountError,
    OperationResult,
    RejectionReason,
    translate_store_errors,
)


@dataclass
class LedgerPage:
    entries: list[PointsLedgerEntry]
    next_cursor: str | None


@dataclass
class LedgerAudit:
    member_id: UUID
    stored_balance: int
    ledger_sum: int
    latest_resulting_balance: int | None
    entry_count: int

    @property
    def consistent(self) -> bool:
        if self.stored_balance != self.ledger_sum:
            return False
        if self.latest_resulting_balance is None:
            return self.stored_balance == 0
        return self.latest_resulting_balance == self.stored_balance


def encode_sequence_cursor(sequence: int) -> str:
    return base64.urlsafe_b64encode(f"seq:{sequence}".encode("utf-8")).decode("utf-8")


def decode_sequence_cursor(cursor: str) -> int:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
        prefix, value = raw.split(":", 1)
        if prefix != "seq":
            raise ValueError(prefix)
        return int(value)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ValueError("Invalid ledger cursor") from exc


async def lock_member(db_session: AsyncSession, member_id: UUID) -> Member | None:
    """Load a member with a row lock and fresh state for a read-modify-write."""

    stmt = select(Member).where(Member.id == member_id).with_for_update().execution_options(populate_existing=True)
    async with translate_store_errors("lock_member"):
        return (await db_session.execute(stmt)).scalar_one_or_none()


def _validate_amount(amount: object) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidLedgerAmountError(f"Ledger amount must be an integer, got {amount!r}")
    if amount < 0:
        raise InvalidLedgerAmountError(f"Ledger amount must be non-negative, got {amount}")
    return amount


class PointsLedger:
    """Appends ledger entries and keeps ``Member.point_balance`` in step.

    Callers pass a member loaded through :func:`lock_member` so that the
    balance update and the new row share one transaction. The member's
    version column turns a lost update into :class:`ConcurrentUpdateError`.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        observability: MembershipObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_membership_store()

    async def post(
        self,
        member: Member,
        *,
        direction: LedgerDirection,
        amount: int,
        source: LedgerSource,
        related_id: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> PointsLedgerEntry | None:
        """Apply a balance change; a zero amount records nothing and returns ``None``."""

        amount = _validate_amount(amount)
        if amount == 0:
            return None

        delta = amount if direction == LedgerDirection.EARN else -amount
        new_balance = int(member.point_balance or 0) + delta

        async with translate_store_errors("ledger.post"):
            last_sequence = await self._db.scalar(
                select(func.max(PointsLedgerEntry.sequence)).where(PointsLedgerEntry.member_id == member.id)
            )
            entry = PointsLedgerEntry(
                member_id=member.id,
                sequence=(last_sequence or 0) + 1,
                direction=direction,
                amount=amount,
                source=source,
                related_id=related_id,
                resulting_balance=new_balance,
                description=description,
                created_by=created_by,
                metadata_json=metadata or {},
                occurred_at=now or datetime.now(timezone.utc),
            )
            self._db.add(entry)
            member.point_balance = new_balance
            await self._db.flush()

        self._observability.record_ledger_post(direction.value, amount)
        logger.info(
            "Points ledger entry recorded",
            member_id=str(member.id),
            direction=direction.value,
            source=source.value,
            amount=amount,
            resulting_balance=new_balance,
            related_id=related_id,
        )
        return entry

    async def credit(
        self,
        member_id: UUID,
        *,
        amount: int,
        source: LedgerSource,
        related_id: str | None = None,
        description: str | None = None,
        created_by: str | None = None,
    ) -> OperationResult[PointsLedgerEntry | None]:
        """Reload or registration style earn for a member looked up by id."""

        return await self._post_by_id(
            member_id,
            direction=LedgerDirection.EARN,
            amount=amount,
            source=source,
            related_id=related_id,
            description=description,
            created_by=created_by,
        )

    async def adjust(
        self,
        member_id: UUID,
        *,
        delta: int,
        reason: str,
        created_by: str | None = None,
    ) -> OperationResult[PointsLedgerEntry | None]:
        """Signed administrative correction."""

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidLedgerAmountError(f"Adjustment must be an integer, got {delta!r}")
        direction = LedgerDirection.EARN if delta >= 0 else LedgerDirection.SPEND
        return await self._post_by_id(
            member_id,
            direction=direction,
            amount=abs(delta),
            source=LedgerSource.ADMIN,
            description=reason,
            created_by=created_by,
        )

    async def _post_by_id(self, member_id: UUID, **kwargs: Any) -> OperationResult[PointsLedgerEntry | None]:
        _validate_amount(kwargs["amount"])
        member = await lock_member(self._db, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        return OperationResult.ok(await self.post(member, **kwargs))

    async def list_entries(
        self,
        member_id: UUID,
        *,
        limit: int = 50,
        cursor: str | None = None,
    ) -> LedgerPage:
        """Newest-first history page."""

        limit = max(1, min(limit, 200))
        stmt = (
            select(PointsLedgerEntry)
            .where(PointsLedgerEntry.member_id == member_id)
            .order_by(PointsLedgerEntry.sequence.desc())
            .limit(limit + 1)
        )
        if cursor:
            stmt = stmt.where(PointsLedgerEntry.sequence < decode_sequence_cursor(cursor))

        rows: Sequence[PointsLedgerEntry] = (await self._db.execute(stmt)).scalars().all()
        entries = list(rows[:limit])
        next_cursor = encode_sequence_cursor(entries[-1].sequence) if len(rows) > limit else None
        return LedgerPage(entries=entries, next_cursor=next_cursor)

    async def audit_balance(self, member_id: UUID) -> OperationResult[LedgerAudit]:
        """Compare the stored balance with the ledger; for reconciliation, not the hot path."""

        member = await self._db.get(Member, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")

        signed = case(
            (PointsLedgerEntry.direction == LedgerDirection.EARN, PointsLedgerEntry.amount),
            else_=-PointsLedgerEntry.amount,
        )
        total, count = (
            await self._db.execute(
                select(func.coalesce(func.sum(signed), 0), func.count(PointsLedgerEntry.id)).where(
                    PointsLedgerEntry.member_id == member_id
                )
            )
        ).one()
        latest = await self._db.scalar(
            select(PointsLedgerEntry.resulting_balance)
            .where(PointsLedgerEntry.member_id == member_id)
            .order_by(PointsLedgerEntry.sequence.desc())
            .limit(1)
        )
        audit = LedgerAudit(
            member_id=member_id,
            stored_balance=int(member.point_balance or 0),
            ledger_sum=int(total or 0),
            latest_resulting_balance=latest,
            entry_count=int(count or 0),
        )
        if not audit.consistent:
            logger.warning(
                "Points ledger out of balance",
                member_id=str(member_id),
                stored_balance=audit.stored_balance,
                ledger_sum=audit.ledger_sum,
                latest_resulting_balance=latest,
            )
        return OperationResult.ok(audit)


__all__ = [
    "LedgerAudit",
    "LedgerPage",
    "PointsLedger",
    "decode_sequence_cursor",
    "encode_sequence_cursor",
    "lock_member",
]
