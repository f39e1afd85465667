"""Point balance, ledger history and administrative credits."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.api.dependencies.security import admin_actor, require_admin_api_key
from clubhouse_api.api.dependencies.session import require_member_session
from clubhouse_api.api.errors import unwrap_or_raise
from clubhouse_api.api.v1.endpoints._common import aware, bounded, commit
from clubhouse_api.db.session import get_session
from clubhouse_api.models.member import Member
from clubhouse_api.models.points_ledger import LedgerSource, PointsLedgerEntry
from clubhouse_api.services.membership import PointsLedger


router = APIRouter(prefix="/points", tags=["points"])


class PointsBalanceResponse(BaseModel):
    memberId: UUID
    pointBalance: int
    status: str


class LedgerEntryResponse(BaseModel):
    id: UUID
    sequence: int
    direction: str
    amount: int
    source: str
    relatedId: Optional[str]
    resultingBalance: int
    description: Optional[str]
    createdBy: Optional[str]
    metadata: dict[str, Any]
    occurredAt: datetime


class LedgerWindowResponse(BaseModel):
    entries: List[LedgerEntryResponse]
    nextCursor: Optional[str]


class ReloadRequest(BaseModel):
    amount: int = Field(..., gt=0)
    reference: Optional[str] = Field(None, description="Payment or receipt reference for the reload")
    note: Optional[str] = None


class AdjustmentRequest(BaseModel):
    delta: int = Field(..., description="Signed point correction")
    reason: str = Field(..., min_length=1)


class LedgerPostResponse(BaseModel):
    entry: Optional[LedgerEntryResponse]
    pointBalance: int


class LedgerAuditResponse(BaseModel):
    memberId: UUID
    storedBalance: int
    ledgerSum: int
    latestResultingBalance: Optional[int]
    entryCount: int
    consistent: bool


def serialize_ledger_entry(entry: PointsLedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        sequence=entry.sequence,
        direction=entry.direction.value,
        amount=entry.amount,
        source=entry.source.value,
        relatedId=entry.related_id,
        resultingBalance=entry.resulting_balance,
        description=entry.description,
        createdBy=entry.created_by,
        metadata=dict(entry.metadata_json or {}),
        occurredAt=aware(entry.occurred_at),
    )


@router.get("/me", response_model=PointsBalanceResponse)
async def get_my_balance(member: Member = Depends(require_member_session)) -> PointsBalanceResponse:
    return PointsBalanceResponse(
        memberId=member.id,
        pointBalance=int(member.point_balance or 0),
        status=member.status.value,
    )


@router.get("/me/ledger", response_model=LedgerWindowResponse)
async def list_my_ledger(
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> LedgerWindowResponse:
    """Return the member's ledger history, newest first."""

    ledger = PointsLedger(db)
    try:
        page = await ledger.list_entries(member.id, limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor") from exc
    return LedgerWindowResponse(
        entries=[serialize_ledger_entry(entry) for entry in page.entries],
        nextCursor=page.next_cursor,
    )


async def _post_response(db: AsyncSession, member_id: UUID, entry: PointsLedgerEntry | None) -> LedgerPostResponse:
    member = await db.get(Member, member_id)
    return LedgerPostResponse(
        entry=serialize_ledger_entry(entry) if entry else None,
        pointBalance=int(member.point_balance or 0) if member else 0,
    )


@router.post(
    "/members/{member_id}/reload",
    response_model=LedgerPostResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def reload_points(
    member_id: UUID,
    payload: ReloadRequest,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> LedgerPostResponse:
    """Credit points bought at the counter."""

    ledger = PointsLedger(db)
    result = await bounded(
        ledger.credit(
            member_id,
            amount=payload.amount,
            source=LedgerSource.RELOAD,
            related_id=payload.reference,
            description=payload.note or "Points reload",
            created_by=actor,
        ),
        "points.reload",
    )
    entry = unwrap_or_raise(result)
    await commit(db, "points.reload_points")
    return await _post_response(db, member_id, entry)


@router.post(
    "/members/{member_id}/adjustments",
    response_model=LedgerPostResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def adjust_points(
    member_id: UUID,
    payload: AdjustmentRequest,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> LedgerPostResponse:
    ledger = PointsLedger(db)
    result = await bounded(
        ledger.adjust(member_id, delta=payload.delta, reason=payload.reason, created_by=actor),
        "points.adjust",
    )
    entry = unwrap_or_raise(result)
    await commit(db, "points.adjust_points")
    return await _post_response(db, member_id, entry)


@router.get(
    "/members/{member_id}/ledger",
    response_model=LedgerWindowResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def list_member_ledger(
    member_id: UUID,
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
) -> LedgerWindowResponse:
    ledger = PointsLedger(db)
    try:
        page = await ledger.list_entries(member_id, limit=limit, cursor=cursor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor") from exc
    return LedgerWindowResponse(
        entries=[serialize_ledger_entry(entry) for entry in page.entries],
        nextCursor=page.next_cursor,
    )


@router.get(
    "/members/{member_id}/audit",
    response_model=LedgerAuditResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def audit_member_balance(
    member_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> LedgerAuditResponse:
    """Reconcile the stored balance against the ledger."""

    audit = unwrap_or_raise(await PointsLedger(db).audit_balance(member_id))
    return LedgerAuditResponse(
        memberId=audit.member_id,
        storedBalance=audit.stored_balance,
        ledgerSum=audit.ledger_sum,
        latestResultingBalance=audit.latest_resulting_balance,
        entryCount=audit.entry_count,
        consistent=audit.consistent,
    )
