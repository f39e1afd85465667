"""Member enrollment and entitlement snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.api.dependencies.security import admin_actor, require_admin_api_key
from clubhouse_api.api.dependencies.session import require_member_session
from clubhouse_api.api.errors import unwrap_or_raise
from clubhouse_api.api.v1.endpoints._common import aware, bounded, commit
from clubhouse_api.db.session import get_session
from clubhouse_api.models.member import Member
from clubhouse_api.services.membership import (
    DuplicateMemberError,
    MemberEnrollmentService,
    MembershipBillingCycle,
)


router = APIRouter(prefix="/members", tags=["members"])


class MemberEnrollmentRequest(BaseModel):
    displayName: str = Field(..., min_length=1)
    email: Optional[str] = None
    openingPoints: int = Field(0, ge=0)
    collectInitialFee: bool = False


class MembershipPeriodResponse(BaseModel):
    start: datetime
    end: Optional[datetime]


class MemberResponse(BaseModel):
    id: UUID
    displayName: str
    email: Optional[str]
    status: str
    pointBalance: int
    totalVisitHours: float
    currentSessionId: Optional[UUID]
    lastCheckInAt: Optional[datetime]
    renewalWaiverExpiresAt: Optional[datetime]
    createdAt: datetime
    membershipPeriod: Optional[MembershipPeriodResponse] = None


async def _serialize_member(member: Member, billing: MembershipBillingCycle) -> MemberResponse:
    period = await billing.current_period(member)
    return MemberResponse(
        id=member.id,
        displayName=member.display_name,
        email=member.email,
        status=member.status.value,
        pointBalance=int(member.point_balance or 0),
        totalVisitHours=float(member.total_visit_hours or 0.0),
        currentSessionId=member.current_session_id,
        lastCheckInAt=aware(member.last_check_in_at),
        renewalWaiverExpiresAt=aware(member.renewal_waiver_expires_at),
        createdAt=aware(member.created_at),
        membershipPeriod=MembershipPeriodResponse(start=period.start, end=period.end),
    )


@router.post(
    "",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def enroll_member(
    payload: MemberEnrollmentRequest,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> MemberResponse:
    """Enroll a member and schedule the initial membership fee."""

    service = MemberEnrollmentService(db)
    try:
        enrollment = await bounded(
            service.enroll(
                display_name=payload.displayName,
                email=payload.email,
                opening_points=payload.openingPoints,
                collect_initial_fee=payload.collectInitialFee,
                enrolled_by=actor,
            ),
            "members.enroll",
        )
    except DuplicateMemberError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    await commit(db, "members.enroll_member")
    return await _serialize_member(enrollment.member, MembershipBillingCycle(db))


@router.get("/me", response_model=MemberResponse)
async def get_current_member(
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> MemberResponse:
    return await _serialize_member(member, MembershipBillingCycle(db))


@router.get(
    "/{member_id}",
    response_model=MemberResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_member(
    member_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> MemberResponse:
    billing = MembershipBillingCycle(db)
    unwrap_or_raise(await billing.period_for_member(member_id))
    member = await db.get(Member, member_id)
    return await _serialize_member(member, billing)
