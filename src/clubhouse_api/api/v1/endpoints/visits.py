"""Check-in / check-out endpoints for visit sessions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.api.dependencies.security import admin_actor, require_admin_api_key
from clubhouse_api.api.dependencies.session import require_member_session
from clubhouse_api.api.errors import unwrap_or_raise
from clubhouse_api.api.v1.endpoints._common import aware, bounded, commit
from clubhouse_api.db.session import get_session
from clubhouse_api.models.member import Member
from clubhouse_api.models.visit_session import VisitSession
from clubhouse_api.services.membership import VisitSessionTracker


router = APIRouter(prefix="/visits", tags=["visits"])


class CheckInRequest(BaseModel):
    memberId: UUID


class CheckOutRequest(BaseModel):
    forcedHours: Optional[float] = Field(None, ge=0, description="Bill a fixed number of hours instead of elapsed time")


class VisitSessionResponse(BaseModel):
    id: UUID
    memberId: UUID
    status: str
    checkInAt: datetime
    checkInBy: Optional[str]
    checkOutAt: Optional[datetime]
    checkOutBy: Optional[str]
    durationMinutes: Optional[int]
    durationHours: Optional[float]
    hourlyRate: Optional[int]
    pointsCharged: Optional[int]
    isWaived: bool
    forced: bool
    redemptions: List[dict[str, Any]]


def serialize_visit_session(session: VisitSession) -> VisitSessionResponse:
    return VisitSessionResponse(
        id=session.id,
        memberId=session.member_id,
        status=session.status.value,
        checkInAt=aware(session.check_in_at),
        checkInBy=session.check_in_by,
        checkOutAt=aware(session.check_out_at),
        checkOutBy=session.check_out_by,
        durationMinutes=session.duration_minutes,
        durationHours=session.duration_hours,
        hourlyRate=session.hourly_rate,
        pointsCharged=session.points_charged,
        isWaived=bool(session.is_waived),
        forced=bool(session.forced),
        redemptions=list(session.redemptions or []),
    )


@router.post(
    "/check-in",
    response_model=VisitSessionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def check_in(
    payload: CheckInRequest,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> VisitSessionResponse:
    """Open a visit session for a member scanned at the door."""

    tracker = VisitSessionTracker(db)
    result = await bounded(tracker.open_session(payload.memberId, checked_in_by=actor), "visits.open")
    session = unwrap_or_raise(result)
    await commit(db, "visits.check_in")
    return serialize_visit_session(session)


@router.post(
    "/{session_id}/check-out",
    response_model=VisitSessionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def check_out(
    session_id: UUID,
    payload: CheckOutRequest | None = None,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> VisitSessionResponse:
    """Close a visit session and charge visit time to the member's points."""

    tracker = VisitSessionTracker(db)
    forced_hours = payload.forcedHours if payload else None
    result = await bounded(
        tracker.close_session(session_id, actor=actor, forced_hours=forced_hours),
        "visits.close",
    )
    session = unwrap_or_raise(result)
    await commit(db, "visits.check_out")
    return serialize_visit_session(session)


@router.get(
    "/pending",
    response_model=List[VisitSessionResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_pending_sessions(db: AsyncSession = Depends(get_session)) -> List[VisitSessionResponse]:
    tracker = VisitSessionTracker(db)
    return [serialize_visit_session(session) for session in await tracker.list_pending_sessions()]


@router.get("/me", response_model=List[VisitSessionResponse])
async def list_my_sessions(
    limit: int = Query(25, ge=1, le=100),
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[VisitSessionResponse]:
    tracker = VisitSessionTracker(db)
    sessions = await tracker.list_member_sessions(member.id, limit=limit)
    return [serialize_visit_session(session) for session in sessions]


@router.get(
    "/members/{member_id}",
    response_model=List[VisitSessionResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_member_sessions(
    member_id: UUID,
    limit: int = Query(25, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> List[VisitSessionResponse]:
    tracker = VisitSessionTracker(db)
    sessions = await tracker.list_member_sessions(member_id, limit=limit)
    return [serialize_visit_session(session) for session in sessions]
