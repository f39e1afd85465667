"""Annual membership fee billing cycle and membership period resolution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.core.settings import settings
from clubhouse_api.models.member import (
    FeeRecordStatus,
    FeeRenewalType,
    Member,
    MemberStatus,
    MembershipFeeRecord,
)
from clubhouse_api.models.points_ledger import LedgerDirection, LedgerSource, PointsLedgerEntry
from clubhouse_api.observability.membership import MembershipObservabilityStore, get_membership_store
from clubhouse_api.services.membership.config import EntitlementConfigService
from clubhouse_api.services.membership.errors import OperationResult, RejectionReason, translate_store_errors
from clubhouse_api.services.membership.ledger import PointsLedger, lock_member
from clubhouse_api.services.membership.periods import (
    MembershipPeriod,
    add_years,
    end_of_venue_day,
    ensure_utc,
    resolve_membership_period,
    venue_date,
)


@dataclass
class FeeDeduction:
    record: MembershipFeeRecord
    ledger_entry: PointsLedgerEntry | None
    next_record: MembershipFeeRecord | None
    balance_after: int

    @property
    def paid(self) -> bool:
        return self.record.status == FeeRecordStatus.PAID


class MembershipBillingCycle:
    """Creates fee records, collects them through the ledger and toggles member status."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        config: EntitlementConfigService | None = None,
        observability: MembershipObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_membership_store()
        self._ledger = ledger or PointsLedger(db_session, observability=self._observability)
        self._config = config or EntitlementConfigService(db_session)

    async def create_fee_record(
        self,
        member_id: UUID,
        *,
        due_date: datetime,
        renewal_type: FeeRenewalType = FeeRenewalType.INITIAL,
        previous_due_date: datetime | None = None,
    ) -> OperationResult[MembershipFeeRecord]:
        member = await self._db.get(Member, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        record = await self._create_record(
            member,
            due_date=due_date,
            renewal_type=renewal_type,
            previous_due_date=previous_due_date,
        )
        return OperationResult.ok(record)

    async def _create_record(
        self,
        member: Member,
        *,
        due_date: datetime,
        renewal_type: FeeRenewalType,
        previous_due_date: datetime | None,
    ) -> MembershipFeeRecord:
        due_date = ensure_utc(due_date)
        existing = (
            await self._db.execute(
                select(MembershipFeeRecord).where(
                    MembershipFeeRecord.member_id == member.id,
                    MembershipFeeRecord.due_date == due_date,
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            return existing

        amount = await self._config.annual_fee_for(venue_date(due_date))
        record = MembershipFeeRecord(
            member_id=member.id,
            due_date=due_date,
            amount=amount,
            renewal_type=renewal_type,
            previous_due_date=ensure_utc(previous_due_date) if previous_due_date else None,
            status=FeeRecordStatus.PENDING,
        )
        async with translate_store_errors("billing.create_fee_record"):
            self._db.add(record)
            await self._db.flush()

        logger.info(
            "Membership fee record created",
            member_id=str(member.id),
            fee_record_id=str(record.id),
            due_date=due_date.isoformat(),
            amount=amount,
            renewal_type=renewal_type.value,
        )
        return record

    async def deduct(self, record_id: UUID, *, now: datetime | None = None) -> OperationResult[FeeDeduction]:
        """Charge a pending fee record.

        The spend is always posted. A non-negative resulting balance pays the
        record, activates the member and schedules next year's record; a
        negative one fails the record and deactivates the member without
        reversing the charge.
        """

        now = ensure_utc(now or datetime.now(timezone.utc))
        record = await self._lock_record(record_id)
        if record is None:
            return OperationResult.reject(RejectionReason.RECORD_NOT_FOUND, "Membership fee record not found")
        if record.status != FeeRecordStatus.PENDING:
            return OperationResult.reject(
                RejectionReason.ALREADY_PROCESSED,
                f"Membership fee record is already {record.status.value}",
            )

        member = await lock_member(self._db, record.member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")

        label = "renewal" if record.renewal_type == FeeRenewalType.RENEWAL else "initial"
        entry = await self._ledger.post(
            member,
            direction=LedgerDirection.SPEND,
            amount=int(record.amount),
            source=LedgerSource.MEMBERSHIP_FEE,
            related_id=str(record.id),
            description=f"Annual membership fee ({label})",
            created_by="system",
            metadata={"due_date": ensure_utc(record.due_date).isoformat()},
            now=now,
        )
        balance = entry.resulting_balance if entry is not None else int(member.point_balance or 0)

        record.deducted_at = now
        record.ledger_entry_id = entry.id if entry is not None else None
        next_record: MembershipFeeRecord | None = None

        if balance >= 0:
            record.status = FeeRecordStatus.PAID
            member.status = MemberStatus.ACTIVE
            if record.renewal_type == FeeRenewalType.RENEWAL:
                member.renewal_waiver_expires_at = now + timedelta(days=settings.renewal_waiver_days)
            async with translate_store_errors("billing.deduct"):
                await self._db.flush()
            due_date = ensure_utc(record.due_date)
            next_record = await self._create_record(
                member,
                due_date=add_years(due_date),
                renewal_type=FeeRenewalType.RENEWAL,
                previous_due_date=due_date,
            )
        else:
            record.status = FeeRecordStatus.FAILED
            record.failure_reason = f"Insufficient points: balance after charge is {balance}"
            member.status = MemberStatus.INACTIVE
            async with translate_store_errors("billing.deduct"):
                await self._db.flush()

        self._observability.record_fee_outcome(record.status.value)
        logger.info(
            "Membership fee deducted",
            member_id=str(member.id),
            fee_record_id=str(record.id),
            status=record.status.value,
            amount=record.amount,
            balance_after=balance,
            next_fee_record_id=str(next_record.id) if next_record else None,
        )
        return OperationResult.ok(
            FeeDeduction(record=record, ledger_entry=entry, next_record=next_record, balance_after=balance)
        )

    async def _lock_record(self, record_id: UUID) -> MembershipFeeRecord | None:
        stmt = (
            select(MembershipFeeRecord)
            .where(MembershipFeeRecord.id == record_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with translate_store_errors("billing.lock_record"):
            return (await self._db.execute(stmt)).scalar_one_or_none()

    async def list_records(self, member_id: UUID) -> Sequence[MembershipFeeRecord]:
        stmt = (
            select(MembershipFeeRecord)
            .where(MembershipFeeRecord.member_id == member_id)
            .order_by(MembershipFeeRecord.due_date.desc())
        )
        return (await self._db.execute(stmt)).scalars().all()

    async def current_period(self, member: Member) -> MembershipPeriod:
        """Recomputed from the fee history on every call."""

        records = await self.list_records(member.id)
        return resolve_membership_period(records, member_created_at=member.created_at)

    async def period_for_member(self, member_id: UUID) -> OperationResult[MembershipPeriod]:
        member = await self._db.get(Member, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        return OperationResult.ok(await self.current_period(member))

    async def due_record_ids(self, *, now: datetime | None = None) -> list[UUID]:
        """Pending records due on or before the end of the venue-local day.

        Overdue records are included, so a missed sweep run is caught up by the
        next one; the ``pending`` guard in :meth:`deduct` keeps reruns idempotent.
        """

        cutoff = end_of_venue_day(now or datetime.now(timezone.utc))
        stmt = (
            select(MembershipFeeRecord.id)
            .where(
                MembershipFeeRecord.status == FeeRecordStatus.PENDING,
                MembershipFeeRecord.due_date < cutoff,
            )
            .order_by(MembershipFeeRecord.due_date.asc())
        )
        return list((await self._db.execute(stmt)).scalars().all())


__all__ = ["FeeDeduction", "MembershipBillingCycle"]
