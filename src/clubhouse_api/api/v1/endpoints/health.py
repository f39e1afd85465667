from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.core.settings import settings
from clubhouse_api.db.session import get_session
from clubhouse_api.observability.scheduler import get_membership_scheduler_store


router = APIRouter()

ComponentState = Literal["ready", "starting", "disabled", "error", "degraded"]


class ComponentStatus(BaseModel):
    status: ComponentState
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/healthz", include_in_schema=False)
async def service_health_alias() -> dict[str, str]:
    return await service_health()


async def _database_component(session: AsyncSession) -> ComponentStatus:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        return ComponentStatus(
            status="error",
            detail=f"Database unreachable ({error.__class__.__name__})",
            last_error_at=datetime.now(timezone.utc).isoformat(),
        )
    return ComponentStatus(status="ready")


def _scheduler_component(request: Request) -> ComponentStatus:
    scheduler = getattr(request.app.state, "membership_job_scheduler", None)
    if not settings.membership_job_scheduler_enabled or scheduler is None:
        return ComponentStatus(status="disabled", detail="Membership job scheduler disabled via settings")

    snapshot = get_membership_scheduler_store().snapshot()
    failing_jobs = [
        job_id for job_id, job in snapshot.jobs.items() if job.totals.get("consecutive_failures", 0) > 0
    ]
    last_success = max(
        (job.last_success_at for job in snapshot.jobs.values() if job.last_success_at),
        default=None,
    )
    if failing_jobs:
        return ComponentStatus(
            status="error",
            detail=f"Jobs failing: {', '.join(sorted(failing_jobs))}",
            last_success_at=last_success.isoformat() if last_success else None,
        )
    if not scheduler.is_running:
        return ComponentStatus(status="starting", detail="Membership job scheduler not running")
    return ComponentStatus(status="ready", last_success_at=last_success.isoformat() if last_success else None)


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {
        "database": await _database_component(session),
        "membership_scheduler": _scheduler_component(request),
    }

    status: Literal["ready", "degraded", "error"] = "ready"
    if components["database"].status == "error":
        status = "error"
    elif components["membership_scheduler"].status == "error":
        status = "degraded"
    elif components["membership_scheduler"].status == "starting":
        status = "degraded"
    return ReadinessPayload(status=status, components=components)


@router.get("/health/readyz", include_in_schema=False)
async def service_readiness_alias(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    return await service_readiness(request, session)
