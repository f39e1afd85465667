"""Redemption entitlement engine: quota computation, requests, confirmation and admin assignment."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clubhouse_api.models.member import Member, MemberStatus
from clubhouse_api.models.redemption import (
    RedemptionItem,
    RedemptionItemStatus,
    RedemptionOrigin,
    RedemptionRecord,
)
from clubhouse_api.models.visit_session import VisitSession, VisitSessionStatus
from clubhouse_api.observability.membership import MembershipObservabilityStore, get_membership_store
from clubhouse_api.schemas.entitlement_config import RedemptionConfig
from clubhouse_api.services.membership.billing import MembershipBillingCycle
from clubhouse_api.services.membership.config import EntitlementConfigService
from clubhouse_api.services.membership.errors import (
    InvalidQuantityError,
    OperationResult,
    RejectionReason,
    translate_store_errors,
)
from clubhouse_api.services.membership.ledger import lock_member
from clubhouse_api.services.membership.periods import (
    MembershipPeriod,
    day_key,
    ensure_utc,
    hour_key,
    is_past_cutoff,
    same_instant,
)


@dataclass(frozen=True)
class EffectiveLimits:
    daily_limit: int
    total_limit: int
    hourly_limit: int
    visit_hours: float
    milestone_hours: float | None
    period: MembershipPeriod | None = None


@dataclass(frozen=True)
class RedemptionUsage:
    daily: int
    hourly: int
    total: int


@dataclass(frozen=True)
class RedemptionEligibility:
    limits: EffectiveLimits
    usage: RedemptionUsage
    session_id: UUID
    day_key: str
    hour_key: str

    @property
    def remaining(self) -> dict[str, int]:
        return {
            "daily": max(0, self.limits.daily_limit - self.usage.daily),
            "hourly": max(0, self.limits.hourly_limit - self.usage.hourly),
            "total": max(0, self.limits.total_limit - self.usage.total),
        }


@dataclass
class MirrorCheck:
    session_id: UUID
    missing: list[str] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)
    diverged: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not (self.missing or self.unexpected or self.diverged)


def compute_effective_limits(
    config: RedemptionConfig,
    visit_hours: float,
    *,
    period: MembershipPeriod | None = None,
) -> EffectiveLimits:
    """Base quotas plus the bonus of the highest visit-hour milestone reached."""

    milestone = config.milestone_for(visit_hours)
    return EffectiveLimits(
        daily_limit=config.daily_limit + (milestone.daily_bonus if milestone else 0),
        total_limit=config.total_limit + (milestone.total_bonus if milestone else 0),
        hourly_limit=config.effective_hourly_limit,
        visit_hours=visit_hours,
        milestone_hours=milestone.hours_required if milestone else None,
        period=period,
    )


def mirror_entry(item: RedemptionItem) -> dict[str, Any]:
    """Lightweight copy of an item stored on the visit session for display."""

    return {
        "id": str(item.id),
        "status": item.status.value,
        "quantity": item.quantity,
        "productRef": item.product_ref,
        "productName": item.product_name,
        "dayKey": item.day_key,
        "hourKey": item.hour_key,
        "redeemedAt": ensure_utc(item.redeemed_at).isoformat(),
        "origin": item.origin.value,
    }


def _validate_quantity(quantity: object) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(f"Redemption quantity must be a positive integer, got {quantity!r}")
    return quantity


class RedemptionEntitlementEngine:
    """Two-phase redemption workflow bounded by daily, hourly and per-period quotas.

    Member requests check quotas and append inside one transaction serialized
    on the member row (lock plus ``redemption_sequence`` bump under the
    member's version column), so concurrent requests cannot both pass the
    check. Appends to a session's aggregate are guarded by the aggregate's
    own version column, and every write reconciles the session mirror.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        config: EntitlementConfigService | None = None,
        billing: MembershipBillingCycle | None = None,
        observability: MembershipObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_membership_store()
        self._config = config or EntitlementConfigService(db_session)
        self._billing = billing or MembershipBillingCycle(
            db_session,
            config=self._config,
            observability=self._observability,
        )

    # -- quota computation ---------------------------------------------------------

    async def limits(self, member_id: UUID) -> OperationResult[EffectiveLimits]:
        member = await self._db.get(Member, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        return OperationResult.ok(await self._limits_for(member))

    async def _limits_for(self, member: Member) -> EffectiveLimits:
        config = await self._config.get_redemption_config()
        period = await self._billing.current_period(member)
        hours = float(member.total_visit_hours or 0.0)
        if not same_instant(member.visit_hours_period_start, period.start):
            hours = 0.0
        return compute_effective_limits(config, hours, period=period)

    async def _usage(self, member_id: UUID, *, at: datetime, period: MembershipPeriod) -> RedemptionUsage:
        completed = RedemptionItem.status == RedemptionItemStatus.COMPLETED
        quantity_sum = func.coalesce(func.sum(RedemptionItem.quantity), 0)

        daily = await self._db.scalar(
            select(quantity_sum).where(
                RedemptionItem.member_id == member_id,
                RedemptionItem.day_key == day_key(at),
                completed,
            )
        )
        hourly = await self._db.scalar(
            select(quantity_sum).where(
                RedemptionItem.member_id == member_id,
                RedemptionItem.hour_key == hour_key(at),
                RedemptionItem.status.in_(
                    [RedemptionItemStatus.COMPLETED, RedemptionItemStatus.PENDING_SELECTION]
                ),
            )
        )
        total_stmt = select(quantity_sum).where(
            RedemptionItem.member_id == member_id,
            RedemptionItem.redeemed_at >= period.start,
            completed,
        )
        if period.end is not None:
            total_stmt = total_stmt.where(RedemptionItem.redeemed_at < period.end)
        total = await self._db.scalar(total_stmt)
        return RedemptionUsage(daily=int(daily or 0), hourly=int(hourly or 0), total=int(total or 0))

    async def usage_summary(
        self,
        member_id: UUID,
        *,
        at: datetime | None = None,
    ) -> OperationResult[tuple[EffectiveLimits, RedemptionUsage]]:
        at = ensure_utc(at or datetime.now(timezone.utc))
        member = await self._db.get(Member, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        limits = await self._limits_for(member)
        usage = await self._usage(member.id, at=at, period=limits.period)  # type: ignore[arg-type]
        return OperationResult.ok((limits, usage))

    # -- eligibility ----------------------------------------------------------------

    async def can_redeem(
        self,
        member_id: UUID,
        quantity: int,
        *,
        at: datetime | None = None,
    ) -> OperationResult[RedemptionEligibility]:
        quantity = _validate_quantity(quantity)
        at = ensure_utc(at or datetime.now(timezone.utc))
        member = await self._db.get(Member, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        result = await self._evaluate(member, quantity, at)
        self._record_decision(result)
        return result

    async def _evaluate(self, member: Member, quantity: int, at: datetime) -> OperationResult[RedemptionEligibility]:
        if member.status != MemberStatus.ACTIVE:
            return OperationResult.reject(RejectionReason.MEMBER_INACTIVE, "Membership is not active")

        config = await self._config.get_redemption_config()
        if is_past_cutoff(at, config.cutoff_time):
            return OperationResult.reject(
                RejectionReason.PAST_CUTOFF,
                f"Redemptions close at {config.cutoff_time}",
            )

        session = await self._open_session(member.id)
        if session is None:
            return OperationResult.reject(
                RejectionReason.NO_OPEN_SESSION,
                "Check in before requesting a redemption",
            )

        limits = await self._limits_for(member)
        usage = await self._usage(member.id, at=at, period=limits.period)  # type: ignore[arg-type]

        if usage.daily + quantity > limits.daily_limit:
            return OperationResult.reject(
                RejectionReason.DAILY_EXCEEDED,
                _quota_message("Daily", limits.daily_limit, usage.daily),
            )
        if usage.total + quantity > limits.total_limit:
            return OperationResult.reject(
                RejectionReason.TOTAL_EXCEEDED,
                _quota_message("Membership period", limits.total_limit, usage.total),
            )
        if usage.hourly + quantity > limits.hourly_limit:
            return OperationResult.reject(
                RejectionReason.HOURLY_EXCEEDED,
                _quota_message("Hourly", limits.hourly_limit, usage.hourly),
            )

        return OperationResult.ok(
            RedemptionEligibility(
                limits=limits,
                usage=usage,
                session_id=session.id,
                day_key=day_key(at),
                hour_key=hour_key(at),
            )
        )

    # -- writes ---------------------------------------------------------------------

    async def request_redemption(
        self,
        member_id: UUID,
        session_id: UUID,
        quantity: int,
        *,
        requested_by: str | None = None,
        product_name: str | None = None,
        at: datetime | None = None,
    ) -> OperationResult[RedemptionItem]:
        """Member-initiated request; appends a ``pending-selection`` item."""

        quantity = _validate_quantity(quantity)
        at = ensure_utc(at or datetime.now(timezone.utc))

        member = await lock_member(self._db, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")

        eligibility = await self._evaluate(member, quantity, at)
        if not eligibility.success:
            self._record_decision(eligibility)
            return OperationResult.reject(eligibility.reason, eligibility.message)  # type: ignore[arg-type]

        if eligibility.value.session_id != session_id:  # type: ignore[union-attr]
            return OperationResult.reject(
                RejectionReason.SESSION_MISMATCH,
                "Redemptions can only be requested against the member's open visit session",
            )

        session = await self._lock_session(session_id)
        if session is None:
            return OperationResult.reject(RejectionReason.SESSION_NOT_FOUND, "Visit session not found")

        member.redemption_sequence = int(member.redemption_sequence or 0) + 1
        item = await self._append_item(
            session,
            member_id=member.id,
            quantity=quantity,
            status=RedemptionItemStatus.PENDING_SELECTION,
            origin=RedemptionOrigin.MEMBER_REQUEST,
            requested_by=requested_by or str(member.id),
            product_name=product_name,
            at=at,
        )
        self._observability.record_redemption_decision("requested")
        logger.info(
            "Redemption requested",
            member_id=str(member.id),
            session_id=str(session.id),
            item_id=str(item.id),
            quantity=quantity,
            hour_key=item.hour_key,
        )
        return OperationResult.ok(item)

    async def confirm_redemption(
        self,
        item_id: UUID,
        *,
        product_ref: str,
        quantity: int,
        confirmed_by: str,
        product_name: str | None = None,
        now: datetime | None = None,
    ) -> OperationResult[RedemptionItem]:
        """Admin fulfillment of a pending item. Confirming twice is rejected, never double counted."""

        quantity = _validate_quantity(quantity)
        now = ensure_utc(now or datetime.now(timezone.utc))

        located = await self._db.get(RedemptionItem, item_id)
        if located is None:
            return OperationResult.reject(RejectionReason.RECORD_NOT_FOUND, "Redemption item not found")

        session = await self._lock_session(located.session_id)
        if session is None:
            return OperationResult.reject(RejectionReason.SESSION_NOT_FOUND, "Visit session not found")

        record = await self._lock_record(located.session_id)
        item = next((candidate for candidate in record.items if candidate.id == item_id), None) if record else None
        if record is None or item is None:
            return OperationResult.reject(RejectionReason.RECORD_NOT_FOUND, "Redemption item not found")
        if item.status == RedemptionItemStatus.COMPLETED:
            return OperationResult.reject(RejectionReason.ALREADY_CONFIRMED, "Redemption item is already confirmed")
        if session.status != VisitSessionStatus.PENDING:
            return OperationResult.reject(RejectionReason.NOT_PENDING, "Visit session is already closed")

        item.status = RedemptionItemStatus.COMPLETED
        item.product_ref = product_ref
        item.product_name = product_name or item.product_name
        item.quantity = quantity
        item.confirmed_by = confirmed_by
        item.confirmed_at = now
        record.updated_at = now
        self._reconcile_mirror(session, record)
        async with translate_store_errors("redemptions.confirm"):
            await self._db.flush()

        self._observability.record_redemption_decision("confirmed")
        logger.info(
            "Redemption confirmed",
            member_id=str(item.member_id),
            session_id=str(session.id),
            item_id=str(item.id),
            product_ref=product_ref,
            quantity=quantity,
            confirmed_by=confirmed_by,
        )
        return OperationResult.ok(item)

    async def admin_assign(
        self,
        member_id: UUID,
        session_id: UUID,
        *,
        product_ref: str,
        quantity: int,
        assigned_by: str,
        product_name: str | None = None,
        at: datetime | None = None,
    ) -> OperationResult[RedemptionItem]:
        """Manual override: records a completed item without quota or cutoff checks."""

        quantity = _validate_quantity(quantity)
        at = ensure_utc(at or datetime.now(timezone.utc))

        member = await lock_member(self._db, member_id)
        if member is None:
            return OperationResult.reject(RejectionReason.MEMBER_NOT_FOUND, "Member not found")
        if member.status != MemberStatus.ACTIVE:
            return OperationResult.reject(RejectionReason.MEMBER_INACTIVE, "Membership is not active")

        open_session = await self._open_session(member.id)
        if open_session is None:
            return OperationResult.reject(RejectionReason.NO_OPEN_SESSION, "Member has no open visit session")
        if open_session.id != session_id:
            return OperationResult.reject(
                RejectionReason.SESSION_MISMATCH,
                "Session is not the member's open visit session",
            )

        session = await self._lock_session(session_id)
        member.redemption_sequence = int(member.redemption_sequence or 0) + 1
        item = await self._append_item(
            session,  # type: ignore[arg-type]
            member_id=member.id,
            quantity=quantity,
            status=RedemptionItemStatus.COMPLETED,
            origin=RedemptionOrigin.ADMIN_ASSIGN,
            requested_by=assigned_by,
            product_ref=product_ref,
            product_name=product_name,
            confirmed_by=assigned_by,
            at=at,
        )
        self._observability.record_redemption_decision("admin_assigned")
        logger.info(
            "Redemption assigned by admin",
            member_id=str(member.id),
            session_id=str(session_id),
            item_id=str(item.id),
            product_ref=product_ref,
            quantity=quantity,
            assigned_by=assigned_by,
        )
        return OperationResult.ok(item)

    # -- aggregate helpers ----------------------------------------------------------

    async def _append_item(
        self,
        session: VisitSession,
        *,
        member_id: UUID,
        quantity: int,
        status: RedemptionItemStatus,
        origin: RedemptionOrigin,
        at: datetime,
        requested_by: str | None = None,
        product_ref: str | None = None,
        product_name: str | None = None,
        confirmed_by: str | None = None,
    ) -> RedemptionItem:
        async with translate_store_errors("redemptions.append"):
            record = await self._lock_record(session.id)
            if record is None:
                record = RedemptionRecord(session_id=session.id, member_id=member_id, item_count=0, items=[])
                self._db.add(record)

            item = RedemptionItem(
                id=uuid4(),
                session_id=session.id,
                member_id=member_id,
                position=int(record.item_count or 0),
                status=status,
                origin=origin,
                quantity=quantity,
                product_ref=product_ref,
                product_name=product_name,
                day_key=day_key(at),
                hour_key=hour_key(at),
                redeemed_at=at,
                requested_by=requested_by,
                confirmed_by=confirmed_by,
                confirmed_at=at if status == RedemptionItemStatus.COMPLETED else None,
            )
            record.items.append(item)
            record.item_count = int(record.item_count or 0) + 1
            record.updated_at = at
            self._reconcile_mirror(session, record)
            await self._db.flush()
        return item

    def _reconcile_mirror(self, session: VisitSession, record: RedemptionRecord) -> None:
        session.redemptions = [mirror_entry(item) for item in sorted(record.items, key=lambda i: i.position)]

    async def _lock_record(self, session_id: UUID) -> RedemptionRecord | None:
        stmt = (
            select(RedemptionRecord)
            .where(RedemptionRecord.session_id == session_id)
            .options(selectinload(RedemptionRecord.items))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _lock_session(self, session_id: UUID) -> VisitSession | None:
        stmt = (
            select(VisitSession)
            .where(VisitSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _open_session(self, member_id: UUID) -> VisitSession | None:
        stmt = select(VisitSession).where(
            VisitSession.member_id == member_id,
            VisitSession.status == VisitSessionStatus.PENDING,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    # -- reads ----------------------------------------------------------------------

    async def session_items(self, session_id: UUID) -> Sequence[RedemptionItem]:
        stmt = (
            select(RedemptionItem)
            .where(RedemptionItem.session_id == session_id)
            .order_by(RedemptionItem.position.asc())
        )
        return (await self._db.execute(stmt)).scalars().all()

    async def verify_session_mirror(self, session_id: UUID) -> OperationResult[MirrorCheck]:
        """Compare the session's display mirror against the canonical aggregate."""

        session = await self._db.get(VisitSession, session_id)
        if session is None:
            return OperationResult.reject(RejectionReason.SESSION_NOT_FOUND, "Visit session not found")

        canonical = {str(item.id): mirror_entry(item) for item in await self.session_items(session_id)}
        mirrored = {entry.get("id"): entry for entry in (session.redemptions or [])}

        check = MirrorCheck(session_id=session_id)
        check.missing = sorted(set(canonical) - set(mirrored))
        check.unexpected = sorted(key for key in set(mirrored) - set(canonical) if key)
        check.diverged = sorted(
            key for key in set(canonical) & set(mirrored) if canonical[key] != mirrored[key]
        )
        if not check.consistent:
            logger.warning(
                "Redemption mirror diverged from aggregate",
                session_id=str(session_id),
                missing=check.missing,
                unexpected=check.unexpected,
                diverged=check.diverged,
            )
        return OperationResult.ok(check)

    def _record_decision(self, result: OperationResult[Any]) -> None:
        decision = "eligible" if result.success else f"rejected:{result.reason.value}"  # type: ignore[union-attr]
        self._observability.record_redemption_decision(decision)


def _quota_message(label: str, limit: int, used: int) -> str:
    remaining = max(0, limit - used)
    return f"{label} redemption limit is {limit}; {used} already used, {remaining} remaining"


__all__ = [
    "EffectiveLimits",
    "MirrorCheck",
    "RedemptionEligibility",
    "RedemptionEntitlementEngine",
    "RedemptionUsage",
    "compute_effective_limits",
    "mirror_entry",
]
