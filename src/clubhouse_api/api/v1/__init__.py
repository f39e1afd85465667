from fastapi import APIRouter

from .endpoints import (
    entitlement_config,
    health,
    members,
    membership_fees,
    membership_jobs,
    observability,
    points,
    redemptions,
    visits,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(members.router)
router.include_router(visits.router)
router.include_router(points.router)
router.include_router(membership_fees.router)
router.include_router(redemptions.router)
router.include_router(entitlement_config.router)
router.include_router(membership_jobs.router)
router.include_router(observability.router)
