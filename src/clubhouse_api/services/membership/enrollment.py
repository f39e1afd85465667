"""Member enrollment: registration bonus and the initial fee record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.core.settings import settings
from clubhouse_api.models.member import FeeRenewalType, Member, MemberStatus, MembershipFeeRecord
from clubhouse_api.models.points_ledger import LedgerDirection, LedgerSource, PointsLedgerEntry
from clubhouse_api.services.membership.billing import FeeDeduction, MembershipBillingCycle
from clubhouse_api.services.membership.errors import translate_store_errors
from clubhouse_api.services.membership.ledger import PointsLedger
from clubhouse_api.services.membership.periods import ensure_utc


@dataclass
class Enrollment:
    member: Member
    registration_entry: PointsLedgerEntry | None
    fee_record: MembershipFeeRecord
    initial_deduction: FeeDeduction | None = None


class DuplicateMemberError(ValueError):
    pass


class MemberEnrollmentService:
    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        billing: MembershipBillingCycle | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._billing = billing or MembershipBillingCycle(db_session, ledger=self._ledger)

    async def enroll(
        self,
        *,
        display_name: str,
        email: str | None = None,
        opening_points: int = 0,
        collect_initial_fee: bool = False,
        enrolled_by: str | None = None,
        now: datetime | None = None,
    ) -> Enrollment:
        """Create an inactive member whose initial fee falls due at enrollment.

        ``opening_points`` is credited as part of the registration earn.
        When ``collect_initial_fee`` is set the fee is deducted straight away,
        which activates the member if the balance covers it.
        """

        now = ensure_utc(now or datetime.now(timezone.utc))
        if email:
            existing = await self._db.scalar(select(Member.id).where(Member.email == email))
            if existing is not None:
                raise DuplicateMemberError(f"A member with email {email} already exists")

        member = Member(
            display_name=display_name,
            email=email,
            status=MemberStatus.INACTIVE,
            point_balance=0,
            total_visit_hours=0.0,
            created_at=now,
        )
        async with translate_store_errors("enrollment.create_member"):
            self._db.add(member)
            await self._db.flush()

        registration_points = settings.registration_bonus_points + opening_points
        registration_entry = await self._ledger.post(
            member,
            direction=LedgerDirection.EARN,
            amount=registration_points,
            source=LedgerSource.REGISTRATION,
            related_id=str(member.id),
            description="Registration points",
            created_by=enrolled_by,
            now=now,
        )
        fee_record = (
            await self._billing.create_fee_record(member.id, due_date=now, renewal_type=FeeRenewalType.INITIAL)
        ).unwrap()

        deduction = None
        if collect_initial_fee:
            deduction = (await self._billing.deduct(fee_record.id, now=now)).unwrap()

        logger.info(
            "Member enrolled",
            member_id=str(member.id),
            registration_points=registration_points,
            fee_record_id=str(fee_record.id),
            status=member.status.value,
        )
        return Enrollment(
            member=member,
            registration_entry=registration_entry,
            fee_record=fee_record,
            initial_deduction=deduction,
        )


__all__ = ["DuplicateMemberError", "Enrollment", "MemberEnrollmentService"]
