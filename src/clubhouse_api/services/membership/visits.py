"""Visit session state machine: check-in, check-out and forced expiry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.core.settings import settings
from clubhouse_api.models.member import Member, MemberStatus
from clubhouse_api.models.points_ledger import LedgerDirection, LedgerSource
from clubhouse_api.models.visit_session import VisitSession, VisitSessionStatus
from clubhouse_api.observability.membership import MembershipObservabilityStore, get_membership_store
from clubhouse_api.services.membership.billing import MembershipBillingCycle
from clubhouse_api.services.membership.config import EntitlementConfigService
from clubhouse_api.services.membership.errors import (
    InvalidDurationError,
    OperationResult,
    RejectionReason,
    translate_store_errors,
)
from clubhouse_api.services.membership.ledger import PointsLedger, lock_member
from clubhouse_api.services.membership.periods import (
    calculate_visit_duration,
    elapsed_minutes,
    ensure_utc,
    same_instant,
    venue_date,
)


def visit_charge(duration_hours: float, hourly_rate: int) -> int:
    """Points for a visit, rounded half up to whole points."""

    amount = Decimal(str(duration_hours)) * Decimal(hourly_rate)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class VisitSessionTracker:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        config: EntitlementConfigService | None = None,
        billing: MembershipBillingCycle | None = None,
        observability: MembershipObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_membership_store()
        self._ledger = ledger or PointsLedger(db_session, observability=self._observability)
        self._config = config or EntitlementConfigService(db_session)
        self._billing = billing or MembershipBillingCycle(
            db_session,
            ledger=self._ledger,
            config=self._config,
            observability=self._observability,
        )

    async def open_session(
        self,
        member_id: UUID,
        *,
        checked_in_by: str | None = None,
        now: datetime | None = None,
    ) -> OperationResult[VisitSession]:
        """Check a member in. A current renewal waiver is snapshotted and consumed."""

        now = ensure_utc(now or datetime.now(timezone.utc))
        member = await lock_member(self._db, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")

        if await self.get_open_session(member_id) is not None:
            return OperationResult.reject(RejectionReason.ALREADY_OPEN, "Member is already checked in")
        if member.status != MemberStatus.ACTIVE:
            return OperationResult.reject(RejectionReason.MEMBER_INACTIVE, "Membership is not active")

        waiver = member.renewal_waiver_expires_at
        is_waived = waiver is not None and now <= ensure_utc(waiver)

        session = VisitSession(
            member_id=member.id,
            status=VisitSessionStatus.PENDING,
            check_in_at=now,
            check_in_by=checked_in_by,
            is_waived=is_waived,
            redemptions=[],
        )
        async with translate_store_errors("visits.open"):
            self._db.add(session)
            await self._db.flush()
            member.current_session_id = session.id
            member.last_check_in_at = now
            if is_waived:
                member.renewal_waiver_expires_at = None
            await self._db.flush()

        self._observability.record_check_in(waived=is_waived)
        logger.info(
            "Visit session opened",
            member_id=str(member.id),
            session_id=str(session.id),
            is_waived=is_waived,
            checked_in_by=checked_in_by,
        )
        return OperationResult.ok(session)

    async def close_session(
        self,
        session_id: UUID,
        *,
        actor: str | None = None,
        forced_hours: float | None = None,
        now: datetime | None = None,
    ) -> OperationResult[VisitSession]:
        """Check a session out, charge the ledger and accumulate period hours."""

        if forced_hours is not None and forced_hours < 0:
            raise InvalidDurationError(f"forced_hours must be non-negative, got {forced_hours}")

        now = ensure_utc(now or datetime.now(timezone.utc))
        session = await self._lock_session(session_id)
        if session is None:
            return OperationResult.reject(RejectionReason.SESSION_NOT_FOUND, "Visit session not found")
        if session.status != VisitSessionStatus.PENDING:
            return OperationResult.reject(RejectionReason.NOT_PENDING, "Visit session is already closed")

        member = await lock_member(self._db, session.member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")

        check_in_at = ensure_utc(session.check_in_at)
        if forced_hours is not None:
            duration_hours = float(forced_hours)
            duration_minutes = int(round(forced_hours * 60))
        else:
            duration_minutes = elapsed_minutes(check_in_at, now)
            duration_hours = calculate_visit_duration(duration_minutes)

        hourly_rate = await self._config.hourly_rate_for(venue_date(check_in_at))
        charge = 0 if session.is_waived else visit_charge(duration_hours, hourly_rate)

        entry = None
        if charge > 0:
            entry = await self._ledger.post(
                member,
                direction=LedgerDirection.SPEND,
                amount=charge,
                source=LedgerSource.VISIT,
                related_id=str(session.id),
                description=f"Visit time charge ({duration_hours:g}h at {hourly_rate} points/h)",
                created_by=actor,
                metadata={"duration_minutes": duration_minutes, "forced": forced_hours is not None},
                now=now,
            )

        period = await self._billing.current_period(member)
        if not same_instant(member.visit_hours_period_start, period.start):
            member.total_visit_hours = 0.0
            member.visit_hours_period_start = period.start
        member.total_visit_hours = float(member.total_visit_hours or 0.0) + duration_hours
        if member.current_session_id == session.id:
            member.current_session_id = None

        session.status = VisitSessionStatus.COMPLETED
        session.check_out_at = now
        session.check_out_by = actor
        session.duration_minutes = duration_minutes
        session.duration_hours = duration_hours
        session.hourly_rate = hourly_rate
        session.points_charged = charge
        session.forced = forced_hours is not None
        session.ledger_entry_id = entry.id if entry is not None else None
        async with translate_store_errors("visits.close"):
            await self._db.flush()

        self._observability.record_check_out(points_charged=charge, forced=session.forced)
        logger.info(
            "Visit session closed",
            member_id=str(member.id),
            session_id=str(session.id),
            duration_minutes=duration_minutes,
            duration_hours=duration_hours,
            points_charged=charge,
            forced=session.forced,
            total_visit_hours=member.total_visit_hours,
        )
        return OperationResult.ok(session)

    async def _lock_session(self, session_id: UUID) -> VisitSession | None:
        stmt = (
            select(VisitSession)
            .where(VisitSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        async with translate_store_errors("visits.lock_session"):
            return (await self._db.execute(stmt)).scalar_one_or_none()

    async def get_open_session(self, member_id: UUID) -> VisitSession | None:
        stmt = select(VisitSession).where(
            VisitSession.member_id == member_id,
            VisitSession.status == VisitSessionStatus.PENDING,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def get_session(self, session_id: UUID) -> VisitSession | None:
        return await self._db.get(VisitSession, session_id)

    async def list_member_sessions(self, member_id: UUID, *, limit: int = 50) -> Sequence[VisitSession]:
        stmt = (
            select(VisitSession)
            .where(VisitSession.member_id == member_id)
            .order_by(VisitSession.check_in_at.desc())
            .limit(max(1, min(limit, 200)))
        )
        return (await self._db.execute(stmt)).scalars().all()

    async def list_pending_sessions(self) -> Sequence[VisitSession]:
        stmt = (
            select(VisitSession)
            .where(VisitSession.status == VisitSessionStatus.PENDING)
            .order_by(VisitSession.check_in_at.asc())
        )
        return (await self._db.execute(stmt)).scalars().all()

    async def stale_session_ids(
        self,
        *,
        now: datetime | None = None,
        max_open_hours: float | None = None,
    ) -> list[UUID]:
        """Pending sessions checked in at least ``max_open_hours`` ago."""

        now = ensure_utc(now or datetime.now(timezone.utc))
        hours = settings.visit_session_max_open_hours if max_open_hours is None else max_open_hours
        threshold = now - timedelta(hours=hours)
        stmt = (
            select(VisitSession.id)
            .where(
                VisitSession.status == VisitSessionStatus.PENDING,
                VisitSession.check_in_at <= threshold,
            )
            .order_by(VisitSession.check_in_at.asc())
        )
        return list((await self._db.execute(stmt)).scalars().all())


__all__ = ["VisitSessionTracker", "visit_charge"]
