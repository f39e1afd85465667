"""Read and update the persisted entitlement configuration."""

from __future__ import annotations

from datetime import date, datetime, timezone

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse_api.core.settings import settings
from clubhouse_api.models.entitlement_config import EntitlementConfig
from clubhouse_api.schemas.entitlement_config import AnnualFeeEntry, FeeConfig, RedemptionConfig

REDEMPTION_CONFIG_KEY = "redemption"
FEE_CONFIG_KEY = "membership_fee"


class EntitlementConfigService:
    """Loads configuration documents once per service instance (one request or job run)."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session
        self._redemption: RedemptionConfig | None = None
        self._fees: FeeConfig | None = None

    async def get_redemption_config(self) -> RedemptionConfig:
        if self._redemption is None:
            row = await self._db.get(EntitlementConfig, REDEMPTION_CONFIG_KEY)
            self._redemption = RedemptionConfig.model_validate(row.payload) if row else RedemptionConfig()
        return self._redemption

    async def get_fee_config(self) -> FeeConfig:
        if self._fees is None:
            row = await self._db.get(EntitlementConfig, FEE_CONFIG_KEY)
            self._fees = FeeConfig.model_validate(row.payload) if row else FeeConfig()
        return self._fees

    async def update_redemption_config(self, config: RedemptionConfig, *, updated_by: str | None = None) -> RedemptionConfig:
        await self._store(REDEMPTION_CONFIG_KEY, config.model_dump(mode="json", by_alias=True), updated_by)
        self._redemption = config
        return config

    async def update_fee_config(self, config: FeeConfig, *, updated_by: str | None = None) -> FeeConfig:
        await self._store(FEE_CONFIG_KEY, config.model_dump(mode="json", by_alias=True), updated_by)
        self._fees = config
        return config

    async def annual_fee_for(self, on: date) -> int:
        entry = (await self.get_fee_config()).entry_for(on)
        return entry.amount if entry else settings.default_annual_fee_points

    async def hourly_rate_for(self, on: date) -> int:
        entry: AnnualFeeEntry | None = (await self.get_fee_config()).entry_for(on)
        if entry is None or entry.hourly_rate is None:
            return settings.visit_default_hourly_rate
        return entry.hourly_rate

    async def _store(self, key: str, payload: dict, updated_by: str | None) -> None:
        row = await self._db.get(EntitlementConfig, key)
        now = datetime.now(timezone.utc)
        if row is None:
            row = EntitlementConfig(key=key, payload=payload, updated_by=updated_by, updated_at=now)
            self._db.add(row)
        else:
            row.payload = payload
            row.updated_by = updated_by
            row.updated_at = now
        await self._db.flush()
        logger.info("Entitlement config updated", key=key, updated_by=updated_by)


__all__ = ["EntitlementConfigService", "FEE_CONFIG_KEY", "REDEMPTION_CONFIG_KEY"]
