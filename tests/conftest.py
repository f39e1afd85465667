import sys
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import clubhouse_api.models  # noqa: F401
from clubhouse_api.app import create_app
from clubhouse_api.core.settings import settings
from clubhouse_api.db.base import Base
from clubhouse_api.db.session import get_session
from clubhouse_api.schemas.entitlement_config import AnnualFeeEntry, FeeConfig
from clubhouse_api.services.membership import EntitlementConfigService, MemberEnrollmentService


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

VENUE = ZoneInfo(settings.venue_timezone)


def venue_time(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=VENUE)


@pytest.fixture
def venue_clock():
    return venue_time


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def enroll_member():
    """Enroll a member whose initial fee is collected at ``now``."""

    async def _enroll(
        session: AsyncSession,
        *,
        now: datetime,
        opening_points: int = 2000,
        display_name: str = "Test Member",
        email: str | None = None,
        collect_initial_fee: bool = True,
    ):
        service = MemberEnrollmentService(session)
        enrollment = await service.enroll(
            display_name=display_name,
            email=email,
            opening_points=opening_points,
            collect_initial_fee=collect_initial_fee,
            enrolled_by="tests",
            now=now,
        )
        await session.commit()
        return enrollment

    return _enroll


@pytest.fixture
def set_fee_table():
    async def _set(session: AsyncSession, *entries: AnnualFeeEntry) -> FeeConfig:
        config = FeeConfig(annual_fees=list(entries))
        await EntitlementConfigService(session).update_fee_config(config, updated_by="tests")
        await session.commit()
        return config

    return _set


def fee_entry(start: date, amount: int, hourly_rate: int | None = None, end: date | None = None) -> AnnualFeeEntry:
    return AnnualFeeEntry(start_date=start, end_date=end, amount=amount, hourly_rate=hourly_rate)


@pytest.fixture
def make_fee_entry():
    return fee_entry
