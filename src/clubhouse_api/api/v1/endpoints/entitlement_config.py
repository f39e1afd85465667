"""Administrator access to redemption quotas and the annual fee table."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.api.dependencies.security import admin_actor, require_admin_api_key
from clubhouse_api.api.v1.endpoints._common import commit
from clubhouse_api.db.session import get_session
from clubhouse_api.schemas.entitlement_config import FeeConfig, RedemptionConfig
from clubhouse_api.services.membership import EntitlementConfigService


router = APIRouter(
    prefix="/entitlement-config",
    tags=["entitlement-config"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/redemption")
async def get_redemption_config(db: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    config = await EntitlementConfigService(db).get_redemption_config()
    return config.model_dump(mode="json", by_alias=True)


@router.put("/redemption")
async def update_redemption_config(
    payload: RedemptionConfig,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    config = await EntitlementConfigService(db).update_redemption_config(payload, updated_by=actor)
    await commit(db, "entitlement_config.update_redemption_config")
    return config.model_dump(mode="json", by_alias=True)


@router.get("/membership-fee")
async def get_fee_config(db: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    config = await EntitlementConfigService(db).get_fee_config()
    return config.model_dump(mode="json", by_alias=True)


@router.put("/membership-fee")
async def update_fee_config(
    payload: FeeConfig,
    actor: str = Depends(admin_actor),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Replace the dated fee table. Existing fee records keep the amount they were created with."""

    config = await EntitlementConfigService(db).update_fee_config(payload, updated_by=actor)
    await commit(db, "entitlement_config.update_fee_config")
    return config.model_dump(mode="json", by_alias=True)
