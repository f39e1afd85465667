"""Manual triggers for the membership maintenance sweeps."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clubhouse_api.api.dependencies.security import require_admin_api_key
from clubhouse_api.db.session import get_session
from clubhouse_api.jobs.membership import run_fee_collection_sweep, run_visit_expiry_sweep


router = APIRouter(
    prefix="/membership-jobs",
    tags=["membership-jobs"],
    dependencies=[Depends(require_admin_api_key)],
)


class VisitExpiryRunRequest(BaseModel):
    forcedHours: Optional[float] = Field(None, ge=0)
    maxOpenHours: Optional[float] = Field(None, gt=0)


def _sweep_session_factory(db: AsyncSession) -> async_sessionmaker[AsyncSession]:
    # Sweeps commit per item, so they get their own sessions on the request's engine.
    return async_sessionmaker(bind=db.bind, expire_on_commit=False)


@router.post("/visit-expiry/run")
async def run_visit_expiry(
    payload: VisitExpiryRunRequest | None = None,
    db: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    return await run_visit_expiry_sweep(
        session_factory=_sweep_session_factory(db),
        forced_hours=payload.forcedHours if payload else None,
        max_open_hours=payload.maxOpenHours if payload else None,
    )


@router.post("/fee-collection/run")
async def run_fee_collection(db: AsyncSession = Depends(get_session)) -> Dict[str, Any]:
    return await run_fee_collection_sweep(session_factory=_sweep_session_factory(db))
