"""Observability snapshots for the membership engine and its scheduler."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from clubhouse_api.api.dependencies.security import require_admin_api_key
from clubhouse_api.observability.membership import get_membership_store
from clubhouse_api.observability.scheduler import get_membership_scheduler_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/membership", summary="Membership engine counters")
async def get_membership_snapshot() -> dict[str, object]:
    return get_membership_store().snapshot().as_dict()


@router.get("/scheduler", summary="Membership scheduler metrics")
async def get_scheduler_snapshot(request: Request) -> dict[str, object]:
    scheduler = getattr(request.app.state, "membership_job_scheduler", None)
    if scheduler is not None:
        return scheduler.health()
    snapshot = get_membership_scheduler_store().snapshot()
    return {"running": False, "configured_jobs": 0, **snapshot.as_dict()}
