"""Pure time arithmetic: visit duration rounding, venue calendar buckets and membership periods."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Protocol
from zoneinfo import ZoneInfo

from clubhouse_api.core.settings import settings

GRACE_PERIOD_MINUTES = 15
HALF_HOUR_THRESHOLD_MINUTES = 30


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite round-trips) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def venue_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.venue_timezone)


def to_venue(value: datetime, zone: ZoneInfo | None = None) -> datetime:
    return ensure_utc(value).astimezone(zone or venue_zone())


def venue_date(value: datetime, zone: ZoneInfo | None = None) -> date:
    return to_venue(value, zone).date()


def day_key(value: datetime, zone: ZoneInfo | None = None) -> str:
    return to_venue(value, zone).strftime("%Y-%m-%d")


def hour_key(value: datetime, zone: ZoneInfo | None = None) -> str:
    return to_venue(value, zone).strftime("%Y-%m-%dT%H")


def end_of_venue_day(value: datetime, zone: ZoneInfo | None = None) -> datetime:
    """Start of the next venue-local day, expressed in UTC."""

    zone = zone or venue_zone()
    local_day = venue_date(value, zone)
    next_midnight = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=zone)
    return next_midnight.astimezone(timezone.utc)


def parse_cutoff(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(hour=int(hours), minute=int(minutes))


def is_past_cutoff(at: datetime, cutoff: str, zone: ZoneInfo | None = None) -> bool:
    """True at or after the venue-local cutoff time of day."""

    local = to_venue(at, zone)
    return local.time().replace(tzinfo=None) >= parse_cutoff(cutoff)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(0, math.floor(seconds / 60))


def calculate_visit_duration(minutes: int) -> float:
    """Billable hours for a visit.

    Up to 15 minutes is free, up to 30 minutes bills half an hour, anything
    longer is rounded up to whole hours.
    """

    if minutes <= GRACE_PERIOD_MINUTES:
        return 0.0
    if minutes <= HALF_HOUR_THRESHOLD_MINUTES:
        return 0.5
    return float(math.ceil(minutes / 60))


def add_years(value: datetime, years: int = 1) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return value.replace(year=value.year + years, day=28)


class _FeeRecordLike(Protocol):
    status: object
    due_date: datetime
    previous_due_date: Optional[datetime]


@dataclass(frozen=True)
class MembershipPeriod:
    """Half-open window ``[start, end)``; ``end`` is None for a member who never paid."""

    start: datetime
    end: Optional[datetime]
    paid_record_due_date: Optional[datetime] = None

    def contains(self, at: datetime) -> bool:
        at = ensure_utc(at)
        if at < self.start:
            return False
        return self.end is None or at < self.end

    def as_dict(self) -> dict[str, Optional[str]]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat() if self.end else None,
        }


def resolve_membership_period(
    records: Iterable[_FeeRecordLike],
    *,
    member_created_at: datetime,
) -> MembershipPeriod:
    """Derive the current membership period from the fee-record history.

    The most recently paid record opens the year it pays for,
    ``[due_date, due_date + 1 year)``, which is the window of the renewal
    record created when it was paid.

    The window is anchored on ``due_date``, not on ``deducted_at``. A renewal
    collected late by the fee sweep still covers the year it was due for, so
    consecutive periods stay contiguous and each one ends exactly on the
    pending renewal's ``due_date``.
    """

    paid = [record for record in records if _status_value(record.status) == "paid"]
    if not paid:
        return MembershipPeriod(start=ensure_utc(member_created_at), end=None)

    latest = max(paid, key=lambda record: ensure_utc(record.due_date))
    start = ensure_utc(latest.due_date)
    return MembershipPeriod(start=start, end=add_years(start), paid_record_due_date=start)


def same_instant(left: Optional[datetime], right: Optional[datetime]) -> bool:
    if left is None or right is None:
        return left is right
    return ensure_utc(left) == ensure_utc(right)


def _status_value(status: object) -> str:
    return getattr(status, "value", status)  # type: ignore[return-value]


__all__ = [
    "MembershipPeriod",
    "add_years",
    "calculate_visit_duration",
    "day_key",
    "elapsed_minutes",
    "end_of_venue_day",
    "ensure_utc",
    "hour_key",
    "is_past_cutoff",
    "parse_cutoff",
    "resolve_membership_period",
    "same_instant",
    "to_venue",
    "venue_date",
    "venue_zone",
]
