"""Annual membership fee records and collection."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.api.dependencies.security import require_admin_api_key
from clubhouse_api.api.dependencies.session import require_member_session
from clubhouse_api.api.errors import unwrap_or_raise
from clubhouse_api.api.v1.endpoints._common import aware, bounded, commit
from clubhouse_api.db.session import get_session
from clubhouse_api.models.member import FeeRenewalType, Member, MembershipFeeRecord
from clubhouse_api.services.membership import MembershipBillingCycle


router = APIRouter(prefix="/membership-fees", tags=["membership-fees"])


class FeeRecordResponse(BaseModel):
    id: UUID
    memberId: UUID
    dueDate: datetime
    amount: int
    renewalType: str
    previousDueDate: Optional[datetime]
    status: str
    deductedAt: Optional[datetime]
    ledgerEntryId: Optional[UUID]
    failureReason: Optional[str]


class CreateFeeRecordRequest(BaseModel):
    dueDate: datetime
    renewalType: Literal["initial", "renewal"] = "initial"
    previousDueDate: Optional[datetime] = None


class FeeDeductionResponse(BaseModel):
    record: FeeRecordResponse
    nextRecord: Optional[FeeRecordResponse]
    balanceAfter: int
    memberStatus: str


class MembershipPeriodResponse(BaseModel):
    start: datetime
    end: Optional[datetime]


def serialize_fee_record(record: MembershipFeeRecord) -> FeeRecordResponse:
    return FeeRecordResponse(
        id=record.id,
        memberId=record.member_id,
        dueDate=aware(record.due_date),
        amount=record.amount,
        renewalType=record.renewal_type.value,
        previousDueDate=aware(record.previous_due_date),
        status=record.status.value,
        deductedAt=aware(record.deducted_at),
        ledgerEntryId=record.ledger_entry_id,
        failureReason=record.failure_reason,
    )


@router.get("/me", response_model=List[FeeRecordResponse])
async def list_my_fee_records(
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[FeeRecordResponse]:
    records = await MembershipBillingCycle(db).list_records(member.id)
    return [serialize_fee_record(record) for record in records]


@router.get("/me/period", response_model=MembershipPeriodResponse)
async def get_my_membership_period(
    member: Member = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> MembershipPeriodResponse:
    period = await MembershipBillingCycle(db).current_period(member)
    return MembershipPeriodResponse(start=period.start, end=period.end)


@router.get(
    "/members/{member_id}",
    response_model=List[FeeRecordResponse],
    dependencies=[Depends(require_admin_api_key)],
)
async def list_member_fee_records(
    member_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> List[FeeRecordResponse]:
    records = await MembershipBillingCycle(db).list_records(member_id)
    return [serialize_fee_record(record) for record in records]


@router.post(
    "/members/{member_id}",
    response_model=FeeRecordResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_api_key)],
)
async def create_fee_record(
    member_id: UUID,
    payload: CreateFeeRecordRequest,
    db: AsyncSession = Depends(get_session),
) -> FeeRecordResponse:
    """Schedule a fee record; the amount comes from the fee table entry effective on the due date."""

    billing = MembershipBillingCycle(db)
    result = await bounded(
        billing.create_fee_record(
            member_id,
            due_date=payload.dueDate,
            renewal_type=FeeRenewalType(payload.renewalType),
            previous_due_date=payload.previousDueDate,
        ),
        "billing.create_fee_record",
    )
    record = unwrap_or_raise(result)
    await commit(db, "membership_fees.create_fee_record")
    return serialize_fee_record(record)


@router.post(
    "/{record_id}/deduct",
    response_model=FeeDeductionResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def deduct_fee_record(
    record_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> FeeDeductionResponse:
    """Collect a pending fee now instead of waiting for the daily sweep."""

    billing = MembershipBillingCycle(db)
    deduction = unwrap_or_raise(await bounded(billing.deduct(record_id), "billing.deduct"))
    await commit(db, "membership_fees.deduct_fee_record")
    member = await db.get(Member, deduction.record.member_id)
    return FeeDeductionResponse(
        record=serialize_fee_record(deduction.record),
        nextRecord=serialize_fee_record(deduction.next_record) if deduction.next_record else None,
        balanceAfter=deduction.balance_after,
        memberStatus=member.status.value if member else "inactive",
    )
