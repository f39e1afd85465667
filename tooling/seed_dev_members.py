"""Seed development members with points and a collected initial fee."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clubhouse_api.core.settings import settings
from clubhouse_api.models.member import Member
from clubhouse_api.services.membership import MemberEnrollmentService


class SeedMember(TypedDict):
    email: str
    display_name: str
    opening_points: int
    collect_initial_fee: bool


DEV_MEMBERS: list[SeedMember] = [
    {
        "email": os.getenv("DEV_MEMBER_REGULAR_EMAIL", "regular@clubhouse.dev").lower(),
        "display_name": "Regular QA",
        "opening_points": 2000,
        "collect_initial_fee": True,
    },
    {
        "email": os.getenv("DEV_MEMBER_LOW_BALANCE_EMAIL", "low-balance@clubhouse.dev").lower(),
        "display_name": "Low Balance QA",
        "opening_points": 50,
        "collect_initial_fee": True,
    },
    {
        "email": os.getenv("DEV_MEMBER_PENDING_EMAIL", "pending@clubhouse.dev").lower(),
        "display_name": "Pending Fee QA",
        "opening_points": 500,
        "collect_initial_fee": False,
    },
]


async def seed_members(session: AsyncSession) -> None:
    service = MemberEnrollmentService(session)
    for member in DEV_MEMBERS:
        existing = await session.scalar(select(Member.id).where(Member.email == member["email"]))
        if existing is not None:
            continue
        await service.enroll(
            display_name=member["display_name"],
            email=member["email"],
            opening_points=member["opening_points"],
            collect_initial_fee=member["collect_initial_fee"],
            enrolled_by="seed",
        )
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_members(session)
        print("Development members ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
