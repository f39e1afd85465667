"""Collect annual membership fees that have fallen due."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List

from loguru import logger

from clubhouse_api.jobs.membership._session import SessionFactory, resolve_session
from clubhouse_api.models.member import FeeRecordStatus
from clubhouse_api.observability.tracing import get_tracer
from clubhouse_api.services.membership import MembershipBillingCycle


async def run_fee_collection_sweep(
    *,
    session_factory: SessionFactory,
    now: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Deduct every pending fee record due by the end of the venue-local day.

    Records already paid or failed are skipped by the pending guard, so the
    sweep can be re-run safely.
    """

    now = now or dt.datetime.now(dt.timezone.utc)
    session = await resolve_session(session_factory)

    with get_tracer().start_as_current_span("membership.fee_collection_sweep") as span:
        async with session as managed_session:
            billing = MembershipBillingCycle(managed_session)
            candidates = await billing.due_record_ids(now=now)
            await managed_session.commit()

            paid = 0
            unpaid = 0
            skipped = 0
            errors: List[Dict[str, str]] = []
            for record_id in candidates:
                try:
                    result = await billing.deduct(record_id, now=now)
                except Exception as exc:  # noqa: BLE001 - isolate per-record failures
                    await managed_session.rollback()
                    errors.append({"fee_record_id": str(record_id), "error": str(exc)})
                    logger.exception("Membership fee deduction failed", fee_record_id=str(record_id))
                    continue

                if not result.success:
                    await managed_session.rollback()
                    skipped += 1
                    continue

                await managed_session.commit()
                if result.value.record.status == FeeRecordStatus.PAID:
                    paid += 1
                else:
                    unpaid += 1

        summary = {
            "candidates": len(candidates),
            "processed": paid + unpaid,
            "paid": paid,
            "unpaid": unpaid,
            "skipped": skipped,
            "failed": len(errors),
            "errors": errors,
        }
        span.set_attribute("membership.sweep.processed", paid + unpaid)
        span.set_attribute("membership.sweep.failed", len(errors))

    logger.bind(summary=summary).info("Membership fee collection sweep completed")
    return summary


__all__ = ["run_fee_collection_sweep"]
