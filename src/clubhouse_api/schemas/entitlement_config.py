from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RedemptionMilestone(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hours_required: float = Field(..., ge=0, alias="hoursRequired")
    daily_bonus: int = Field(0, ge=0, alias="dailyBonus")
    total_bonus: int = Field(0, ge=0, alias="totalBonus")


def _default_milestones() -> list[RedemptionMilestone]:
    return [
        RedemptionMilestone(hours_required=50, daily_bonus=1, total_bonus=25),
        RedemptionMilestone(hours_required=100, daily_bonus=2, total_bonus=50),
        RedemptionMilestone(hours_required=150, daily_bonus=3, total_bonus=75),
    ]


class RedemptionConfig(BaseModel):
    """Base redemption quotas and the visit-hour milestones that raise them."""

    model_config = ConfigDict(populate_by_name=True)

    daily_limit: int = Field(3, ge=0, alias="dailyLimit")
    total_limit: int = Field(25, ge=0, alias="totalLimit")
    hourly_limit: int | None = Field(None, ge=1, alias="hourlyLimit")
    cutoff_time: str = Field("23:00", alias="cutoffTime", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    milestones: list[RedemptionMilestone] = Field(default_factory=_default_milestones)

    @property
    def effective_hourly_limit(self) -> int:
        return self.hourly_limit if self.hourly_limit is not None else 1

    def milestone_for(self, visit_hours: float) -> RedemptionMilestone | None:
        """Highest milestone reached with ``visit_hours``."""

        reached = [milestone for milestone in self.milestones if visit_hours >= milestone.hours_required]
        if not reached:
            return None
        return max(reached, key=lambda milestone: milestone.hours_required)


class AnnualFeeEntry(BaseModel):
    """Fee amount and visit rate valid on ``[start_date, end_date)``."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(..., alias="startDate")
    end_date: date | None = Field(None, alias="endDate")
    amount: int = Field(..., ge=0)
    hourly_rate: int | None = Field(None, ge=0, alias="hourlyRate")

    @model_validator(mode="after")
    def _check_window(self) -> "AnnualFeeEntry":
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("endDate must be after startDate")
        return self

    def covers(self, on: date) -> bool:
        if on < self.start_date:
            return False
        return self.end_date is None or on < self.end_date


def _default_annual_fees() -> list[AnnualFeeEntry]:
    return [AnnualFeeEntry(start_date=date(2025, 1, 1), amount=150, hourly_rate=25)]


class FeeConfig(BaseModel):
    """Dated annual fee table."""

    model_config = ConfigDict(populate_by_name=True)

    annual_fees: list[AnnualFeeEntry] = Field(default_factory=_default_annual_fees, alias="annualFees")

    @field_validator("annual_fees")
    @classmethod
    def _sort_entries(cls, value: list[AnnualFeeEntry]) -> list[AnnualFeeEntry]:
        return sorted(value, key=lambda entry: entry.start_date)

    def entry_for(self, on: date) -> AnnualFeeEntry | None:
        """Latest entry starting on or before ``on`` that has not ended, else the earliest entry."""

        if not self.annual_fees:
            return None
        matching = [entry for entry in self.annual_fees if entry.covers(on)]
        if matching:
            return matching[-1]
        return self.annual_fees[0]


__all__ = ["AnnualFeeEntry", "FeeConfig", "RedemptionConfig", "RedemptionMilestone"]
