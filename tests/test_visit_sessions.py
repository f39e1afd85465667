from datetime import date, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from clubhouse_api.models.member import FeeRecordStatus, Member, MembershipFeeRecord
from clubhouse_api.models.points_ledger import LedgerSource, PointsLedgerEntry
from clubhouse_api.models.visit_session import VisitSession, VisitSessionStatus
from clubhouse_api.services.membership import (
    InvalidDurationError,
    MembershipBillingCycle,
    RejectionReason,
    VisitSessionTracker,
)


@pytest.mark.asyncio
async def test_check_out_charges_rounded_hours(session_factory, enroll_member, set_fee_table, make_fee_entry, venue_clock) -> None:
    async with session_factory() as session:
        await set_fee_table(session, make_fee_entry(date(2025, 1, 1), amount=100, hourly_rate=10))
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0), opening_points=500)
        member_id = enrollment.member.id
        assert enrollment.member.point_balance == 400

        tracker = VisitSessionTracker(session)
        opened = (await tracker.open_session(member_id, checked_in_by="door", now=venue_clock(2026, 2, 3, 10, 0))).unwrap()
        await session.commit()
        assert opened.status == VisitSessionStatus.PENDING
        assert not opened.is_waived

        closed = (await tracker.close_session(opened.id, actor="door", now=venue_clock(2026, 2, 3, 10, 50))).unwrap()
        await session.commit()

        assert closed.status == VisitSessionStatus.COMPLETED
        assert closed.duration_minutes == 50
        assert closed.duration_hours == 1.0
        assert closed.hourly_rate == 10
        assert closed.points_charged == 10

        member = await session.get(Member, member_id)
        assert member.point_balance == 390
        assert member.total_visit_hours == 1.0
        assert member.current_session_id is None

        entry = await session.get(PointsLedgerEntry, closed.ledger_entry_id)
        assert entry.source == LedgerSource.VISIT
        assert entry.related_id == str(closed.id)


@pytest.mark.asyncio
async def test_grace_period_visit_is_free_and_writes_no_entry(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0))
        tracker = VisitSessionTracker(session)
        opened = (await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 2, 3, 12, 0))).unwrap()
        closed = (await tracker.close_session(opened.id, now=venue_clock(2026, 2, 3, 12, 14))).unwrap()

        assert closed.duration_hours == 0.0
        assert closed.points_charged == 0
        assert closed.ledger_entry_id is None


@pytest.mark.asyncio
async def test_second_check_in_is_rejected(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0))
        tracker = VisitSessionTracker(session)
        (await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 2, 3, 10, 0))).unwrap()
        await session.commit()

        result = await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 2, 3, 10, 5))
        assert not result.success
        assert result.reason == RejectionReason.ALREADY_OPEN


@pytest.mark.asyncio
async def test_inactive_member_cannot_check_in(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0), collect_initial_fee=False)
        tracker = VisitSessionTracker(session)

        result = await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 2, 3, 10, 0))
        assert result.reason == RejectionReason.MEMBER_INACTIVE

        missing = await tracker.open_session(uuid4())
        assert missing.reason == RejectionReason.MEMBER_NOT_FOUND


@pytest.mark.asyncio
async def test_closing_twice_is_not_pending(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0))
        tracker = VisitSessionTracker(session)
        opened = (await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 2, 3, 10, 0))).unwrap()
        (await tracker.close_session(opened.id, now=venue_clock(2026, 2, 3, 11, 0))).unwrap()
        await session.commit()

        again = await tracker.close_session(opened.id, now=venue_clock(2026, 2, 3, 12, 0))
        assert again.reason == RejectionReason.NOT_PENDING

        missing = await tracker.close_session(uuid4())
        assert missing.reason == RejectionReason.SESSION_NOT_FOUND

        with pytest.raises(InvalidDurationError):
            await tracker.close_session(opened.id, forced_hours=-1)


@pytest.mark.asyncio
async def test_forced_close_bills_fixed_hours(session_factory, enroll_member, set_fee_table, make_fee_entry, venue_clock) -> None:
    async with session_factory() as session:
        await set_fee_table(session, make_fee_entry(date(2025, 1, 1), amount=100, hourly_rate=10))
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0), opening_points=500)
        tracker = VisitSessionTracker(session)
        opened = (await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 2, 3, 10, 0))).unwrap()

        closed = (
            await tracker.close_session(
                opened.id,
                actor="system:visit-expiry",
                forced_hours=5,
                now=venue_clock(2026, 2, 4, 11, 0),
            )
        ).unwrap()

        assert closed.forced
        assert closed.duration_hours == 5.0
        assert closed.duration_minutes == 300
        assert closed.points_charged == 50
        assert closed.check_out_by == "system:visit-expiry"


@pytest.mark.asyncio
async def test_only_one_pending_session_per_member_in_storage(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=venue_clock(2026, 2, 3, 9, 0))
        check_in = venue_clock(2026, 2, 3, 10, 0)
        session.add_all(
            [
                VisitSession(member_id=enrollment.member.id, status=VisitSessionStatus.PENDING, check_in_at=check_in, redemptions=[]),
                VisitSession(member_id=enrollment.member.id, status=VisitSessionStatus.PENDING, check_in_at=check_in, redemptions=[]),
            ]
        )
        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()


@pytest.mark.asyncio
async def test_renewal_waiver_is_consumed_by_next_check_in(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrolled_at = venue_clock(2026, 1, 5, 9, 0)
        enrollment = await enroll_member(session, now=enrolled_at, opening_points=2000)
        member_id = enrollment.member.id
        renewal = enrollment.initial_deduction.next_record

        billing = MembershipBillingCycle(session)
        renewed_at = venue_clock(2027, 1, 5, 9, 0)
        deduction = (await billing.deduct(renewal.id, now=renewed_at)).unwrap()
        await session.commit()
        assert deduction.paid

        member = await session.get(Member, member_id)
        assert member.renewal_waiver_expires_at is not None

        tracker = VisitSessionTracker(session)
        waived = (await tracker.open_session(member_id, now=renewed_at + timedelta(hours=1))).unwrap()
        assert waived.is_waived
        closed = (await tracker.close_session(waived.id, now=renewed_at + timedelta(hours=4))).unwrap()
        await session.commit()
        assert closed.points_charged == 0
        assert closed.ledger_entry_id is None

        member = await session.get(Member, member_id)
        assert member.renewal_waiver_expires_at is None

        next_visit = (await tracker.open_session(member_id, now=renewed_at + timedelta(days=1))).unwrap()
        assert not next_visit.is_waived


@pytest.mark.asyncio
async def test_visit_hours_reset_when_membership_period_rolls_over(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        enrolled_at = venue_clock(2026, 1, 5, 9, 0)
        enrollment = await enroll_member(session, now=enrolled_at, opening_points=3000)
        member_id = enrollment.member.id
        tracker = VisitSessionTracker(session)

        first = (await tracker.open_session(member_id, now=venue_clock(2026, 6, 1, 10, 0))).unwrap()
        (await tracker.close_session(first.id, forced_hours=3, now=venue_clock(2026, 6, 1, 13, 0))).unwrap()
        await session.commit()
        member = await session.get(Member, member_id)
        assert member.total_visit_hours == 3.0

        renewal_id = enrollment.initial_deduction.next_record.id
        (await MembershipBillingCycle(session).deduct(renewal_id, now=venue_clock(2027, 1, 5, 9, 0))).unwrap()
        await session.commit()

        second = (await tracker.open_session(member_id, now=venue_clock(2027, 1, 6, 10, 0))).unwrap()
        (await tracker.close_session(second.id, forced_hours=2, now=venue_clock(2027, 1, 6, 12, 0))).unwrap()
        await session.commit()

        member = await session.get(Member, member_id)
        assert member.total_visit_hours == 2.0

        records = (
            await session.execute(
                select(MembershipFeeRecord).where(MembershipFeeRecord.member_id == member_id)
            )
        ).scalars().all()
        assert sum(1 for record in records if record.status == FeeRecordStatus.PAID) == 2


@pytest.mark.asyncio
async def test_stale_sessions_are_listed_after_max_open_hours(session_factory, enroll_member, venue_clock) -> None:
    async with session_factory() as session:
        first = await enroll_member(session, now=venue_clock(2026, 2, 1, 9, 0), display_name="Early")
        second = await enroll_member(session, now=venue_clock(2026, 2, 1, 9, 0), display_name="Late")
        tracker = VisitSessionTracker(session)
        old = (await tracker.open_session(first.member.id, now=venue_clock(2026, 2, 2, 10, 0))).unwrap()
        (await tracker.open_session(second.member.id, now=venue_clock(2026, 2, 3, 8, 0))).unwrap()
        await session.commit()

        stale = await tracker.stale_session_ids(now=venue_clock(2026, 2, 3, 10, 0), max_open_hours=24)
        assert stale == [old.id]

        pending = await tracker.list_pending_sessions()
        assert len(pending) == 2
