from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clubhouse_api.db.base import Base
from clubhouse_api.models.member import Member
from clubhouse_api.models.points_ledger import LedgerDirection, LedgerSource, PointsLedgerEntry
from clubhouse_api.services.membership import (
    ConcurrentUpdateError,
    InvalidLedgerAmountError,
    PointsLedger,
    RejectionReason,
)
from clubhouse_api.services.membership.ledger import decode_sequence_cursor, encode_sequence_cursor, lock_member

NOW = datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_posts_keep_balance_and_resulting_balance_in_step(session_factory, enroll_member) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=NOW, opening_points=100, collect_initial_fee=False)
        member_id = enrollment.member.id
        ledger = PointsLedger(session)

        member = await lock_member(session, member_id)
        spend = await ledger.post(
            member,
            direction=LedgerDirection.SPEND,
            amount=130,
            source=LedgerSource.PURCHASE,
            related_id="order-1",
            description="Bar tab",
        )
        reload = (await ledger.credit(member_id, amount=50, source=LedgerSource.RELOAD, related_id="rcpt-9")).unwrap()
        await session.commit()

        assert enrollment.registration_entry.sequence == 1
        assert enrollment.registration_entry.resulting_balance == 100
        assert spend.sequence == 2
        assert spend.resulting_balance == -30
        assert reload.sequence == 3
        assert reload.resulting_balance == 20

        refreshed = await session.get(Member, member_id)
        assert refreshed.point_balance == 20

        audit = (await ledger.audit_balance(member_id)).unwrap()
        assert audit.consistent
        assert audit.ledger_sum == 20
        assert audit.entry_count == 3


@pytest.mark.asyncio
async def test_zero_amount_writes_nothing(session_factory, enroll_member) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=NOW, opening_points=0, collect_initial_fee=False)
        assert enrollment.registration_entry is None

        ledger = PointsLedger(session)
        result = await ledger.adjust(enrollment.member.id, delta=0, reason="no-op")
        assert result.success
        assert result.value is None

        count = (
            await session.execute(
                select(PointsLedgerEntry).where(PointsLedgerEntry.member_id == enrollment.member.id)
            )
        ).scalars().all()
        assert count == []


@pytest.mark.asyncio
async def test_invalid_amounts_raise_before_writing(session_factory, enroll_member) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=NOW, opening_points=10, collect_initial_fee=False)
        ledger = PointsLedger(session)
        member = await lock_member(session, enrollment.member.id)

        with pytest.raises(InvalidLedgerAmountError):
            await ledger.post(member, direction=LedgerDirection.EARN, amount=-5, source=LedgerSource.OTHER)
        with pytest.raises(InvalidLedgerAmountError):
            await ledger.credit(member.id, amount=2.5, source=LedgerSource.RELOAD)  # type: ignore[arg-type]

        assert member.point_balance == 10


@pytest.mark.asyncio
async def test_adjustment_direction_follows_sign(session_factory, enroll_member) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=NOW, opening_points=40, collect_initial_fee=False)
        ledger = PointsLedger(session)

        debit = (await ledger.adjust(enrollment.member.id, delta=-15, reason="Damaged cue", created_by="staff-1")).unwrap()
        assert debit.direction == LedgerDirection.SPEND
        assert debit.amount == 15
        assert debit.source == LedgerSource.ADMIN
        assert debit.resulting_balance == 25
        assert debit.signed_amount == -15


@pytest.mark.asyncio
async def test_unknown_member_is_rejected(session_factory) -> None:
    async with session_factory() as session:
        ledger = PointsLedger(session)
        result = await ledger.credit(uuid4(), amount=10, source=LedgerSource.RELOAD)
        assert not result.success
        assert result.reason == RejectionReason.MEMBER_NOT_FOUND


@pytest.mark.asyncio
async def test_ledger_pagination_is_newest_first(session_factory, enroll_member) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=NOW, opening_points=5, collect_initial_fee=False)
        ledger = PointsLedger(session)
        for index in range(4):
            await ledger.credit(enrollment.member.id, amount=index + 1, source=LedgerSource.EVENT)
        await session.commit()

        first = await ledger.list_entries(enrollment.member.id, limit=3)
        assert [entry.sequence for entry in first.entries] == [5, 4, 3]
        assert first.next_cursor is not None

        second = await ledger.list_entries(enrollment.member.id, limit=3, cursor=first.next_cursor)
        assert [entry.sequence for entry in second.entries] == [2, 1]
        assert second.next_cursor is None


def test_cursor_round_trip_and_rejection() -> None:
    assert decode_sequence_cursor(encode_sequence_cursor(42)) == 42
    with pytest.raises(ValueError):
        decode_sequence_cursor("not-a-cursor")


@pytest.mark.asyncio
async def test_audit_flags_out_of_band_balance_changes(session_factory, enroll_member) -> None:
    async with session_factory() as session:
        enrollment = await enroll_member(session, now=NOW, opening_points=60, collect_initial_fee=False)
        member = await session.get(Member, enrollment.member.id)
        member.point_balance = 999
        await session.commit()

        audit = (await PointsLedger(session).audit_balance(member.id)).unwrap()
        assert not audit.consistent
        assert audit.ledger_sum == 60
        assert audit.stored_balance == 999


@pytest.mark.asyncio
async def test_lost_update_surfaces_as_concurrent_update(tmp_path, enroll_member) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with factory() as setup:
            enrollment = await enroll_member(setup, now=NOW, opening_points=100, collect_initial_fee=False)
            member_id = enrollment.member.id

        async with factory() as stale_session, factory() as fresh_session:
            stale_member = await stale_session.get(Member, member_id)

            await PointsLedger(fresh_session).credit(member_id, amount=10, source=LedgerSource.RELOAD)
            await fresh_session.commit()

            with pytest.raises(ConcurrentUpdateError):
                await PointsLedger(stale_session).post(
                    stale_member,
                    direction=LedgerDirection.SPEND,
                    amount=5,
                    source=LedgerSource.PURCHASE,
                )
            await stale_session.rollback()

        async with factory() as check:
            member = await check.get(Member, member_id)
            assert member.point_balance == 110
            audit = (await PointsLedger(check).audit_balance(member_id)).unwrap()
            assert audit.consistent
    finally:
        await engine.dispose()
