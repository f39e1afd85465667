"""Redemption entitlement endpoints: limits, eligibility, requests and fulfillment."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.api.dependencies.security import admin_actor, require_admin_api_key
from clubhouse_api.api.dependencies.session import require_member_session
from clubhouse_api.api.errors import unwrap_or_raise
from clubhouse_api.api.v1.endpoints._common import aware, bounded, commit
from clubhouse_api.db.session import get_session
from clubhouse_api.models.member import Member
from clubhouse_api.models.redemption import RedemptionItem
from clubhouse_api.models.visit_session import VisitSession
from clubhouse_api.services.membership import RedemptionEntitlementEngine


router = APIRouter(prefix="/redemptions", tags=["redemptions"])


class RedemptionLimitsResponse(BaseModel):
    dailyLimit: int
    totalLimit: int
    hourlyLimit: int
    visitHours: float
    milestoneHours: Optional[float]
    periodStart: Optional[datetime]
    periodEnd: Optional[datetime]
    used: dict[str, int]
    remaining: dict[str, int]


class EligibilityRequest(BaseModel):
    quantity: int = Field(1, gt=0)


class EligibilityResponse(BaseModel):
    allowed: bool
    reason: Optional[str]
    message: Optional[str]
    sessionId: Optional[UUID] = None
    remaining: Optional[dict[str, int]] = None


class RedemptionRequest(BaseModel):
    sessionId: UUID
    quantity: int = Field(1, gt=0)
    productName: Optional[str] = None


class ConfirmRedemptionRequest(BaseModel):
    productRef: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    productName: Optional[str] = None


class AdminAssignRequest(BaseModel):
    memberId: UUID
    sessionId: UUID
    productRef: str = Field(..., min_length=1)
    quantity: int = Field(1, gt=0)
    productName: Optional[str] = None


class RedemptionItemResponse(BaseModel):
    id: UUID
    sessionId: UUID
    memberId: UUID
    status: str
    origin: str
    quantity: int
    productRef: Optional[str]
    productName: Optional[str]
    dayKey: str
    hourKey: str
    redeemedAt: datetime
    requestedBy: Optional[str]
    confirmedBy: Optional[str]
    confirmedAt: Optional[datetime]


class SessionRedemptionsResponse(BaseModel):
    sessionId: UUID
    items: List[RedemptionItemResponse]
    mirror: List[dict[str, Any]]
    mirrorConsistent: bool


def serialize_item(item: RedemptionItem) -> RedemptionItemResponse:
    return RedemptionItemResponse(
        id=item.id,
        sessionId=item.session_id,
        memberId=item.member_id,
        status=item.status.value,
        origin=item.origin.value,
        quantity=item.quantity,
        productRef=item.product_ref,
        productName=item.product_name,
        dayKey=item.day_key,
        hourKey=item.hour_key,
        redeemedAt=aware(item.redeemed_at),
        requestedBy=item.requested_by,
        confirmedBy=item.confirmed_by,
        confirmedAt=aware(item.confirmed_at),
    )


@router.get("/me/limits", response_model=RedemptionLimitsResponse)
async def get_my_limits(
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionLimitsResponse:
    """Effective quotas for the current membership period, with usage for this hour and day."""

    engine = RedemptionEntitlementEngine(db)
    limits, usage = unwrap_or_raise(await engine.usage_summary(member.id))
    return RedemptionLimitsResponse(
        dailyLimit=limits.daily_limit,
        totalLimit=limits.total_limit,
        hourlyLimit=limits.hourly_limit,
        visitHours=limits.visit_hours,
        milestoneHours=limits.milestone_hours,
        periodStart=limits.period.start if limits.period else None,
        periodEnd=limits.period.end if limits.period else None,
        used={"daily": usage.daily, "hourly": usage.hourly, "total": usage.total},
        remaining={
            "daily": max(0, limits.daily_limit - usage.daily),
            "hourly": max(0, limits.hourly_limit - usage.hourly),
            "total": max(0, limits.total_limit - usage.total),
        },
    )


@router.post("/eligibility", response_model=EligibilityResponse)
async def check_eligibility(
    payload: EligibilityRequest,
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> EligibilityResponse:
    """Report whether a request for ``quantity`` items would be accepted right now."""

    engine = RedemptionEntitlementEngine(db)
    result = await bounded(engine.can_redeem(member.id, payload.quantity), "redemptions.can_redeem")
    if not result.success:
        return EligibilityResponse(
            allowed=False,
            reason=result.reason.value if result.reason else None,
            message=result.message,
        )
    return EligibilityResponse(
        allowed=True,
        reason=None,
        message=None,
        sessionId=result.value.session_id,
        remaining=result.value.remaining,
    )


@router.post("", response_model=RedemptionItemResponse, status_code=status.HTTP_201_CREATED)
async def request_redemption(
    payload: RedemptionRequest,
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionItemResponse:
    engine = RedemptionEntitlementEngine(db)
    result = await bounded(
        engine.request_redemption(
            member.id,
            payload.sessionId,
            payload.quantity,
            requested_by=str(member.id),
            product_name=payload.productName,
        ),
        "redemptions.request",
    )
    item = unwrap_or_raise(result)
    await commit(db, "redemptions.request_redemption")
    return serialize_item(item)


@router.post(
    "/items/{item_id}/confirm",
    response_model=RedemptionItemResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def confirm_redemption(
    item_id: UUID,
    payload: ConfirmRedemptionRequest,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> RedemptionItemResponse:
    engine = RedemptionEntitlementEngine(db)
    result = await bounded(
        engine.confirm_redemption(
            item_id,
            product_ref=payload.productRef,
            quantity=payload.quantity,
            confirmed_by=actor,
            product_name=payload.productName,
        ),
        "redemptions.confirm",
    )
    item = unwrap_or_raise(result)
    await commit(db, "redemptions.confirm_redemption")
    return serialize_item(item)


@router.post(
    "/assign",
    response_model=RedemptionItemResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def assign_redemption(
    payload: AdminAssignRequest,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> RedemptionItemResponse:
    """Record a complimentary item directly; quota ceilings do not apply."""

    engine = RedemptionEntitlementEngine(db)
    result = await bounded(
        engine.admin_assign(
            payload.memberId,
            payload.sessionId,
            product_ref=payload.productRef,
            quantity=payload.quantity,
            assigned_by=actor,
            product_name=payload.productName,
        ),
        "redemptions.assign",
    )
    item = unwrap_or_raise(result)
    await commit(db, "redemptions.assign_redemption")
    return serialize_item(item)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionRedemptionsResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def get_session_redemptions(
    session_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> SessionRedemptionsResponse:
    engine = RedemptionEntitlementEngine(db)
    check = unwrap_or_raise(await engine.verify_session_mirror(session_id))
    items = await engine.session_items(session_id)
    session = await db.get(VisitSession, session_id)
    return SessionRedemptionsResponse(
        sessionId=session_id,
        items=[serialize_item(item) for item in items],
        mirror=list(session.redemptions or []) if session else [],
        mirrorConsistent=check.consistent,
    )
