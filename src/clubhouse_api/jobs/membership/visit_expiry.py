"""Force-close visit sessions that were never checked out."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List

from loguru import logger

from clubhouse_api.core.settings import settings
from clubhouse_api.jobs.membership._session import SessionFactory, resolve_session
from clubhouse_api.observability.tracing import get_tracer
from clubhouse_api.services.membership import VisitSessionTracker

EXPIRY_ACTOR = "system:visit-expiry"


async def run_visit_expiry_sweep(
    *,
    session_factory: SessionFactory,
    forced_hours: float | None = None,
    max_open_hours: float | None = None,
    now: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Close every pending session open for ``max_open_hours`` with ``forced_hours`` billed.

    Each session is closed in its own transaction; a failure is recorded in
    the summary and the sweep moves on.
    """

    hours = settings.visit_session_forced_hours if forced_hours is None else forced_hours
    now = now or dt.datetime.now(dt.timezone.utc)
    session = await resolve_session(session_factory)

    with get_tracer().start_as_current_span("membership.visit_expiry_sweep") as span:
        async with session as managed_session:
            tracker = VisitSessionTracker(managed_session)
            candidates = await tracker.stale_session_ids(now=now, max_open_hours=max_open_hours)
            await managed_session.commit()

            closed = 0
            skipped = 0
            errors: List[Dict[str, str]] = []
            for session_id in candidates:
                try:
                    result = await tracker.close_session(
                        session_id,
                        actor=EXPIRY_ACTOR,
                        forced_hours=hours,
                        now=now,
                    )
                except Exception as exc:  # noqa: BLE001 - isolate per-session failures
                    await managed_session.rollback()
                    errors.append({"session_id": str(session_id), "error": str(exc)})
                    logger.exception("Visit session expiry failed", session_id=str(session_id))
                    continue

                if result.success:
                    await managed_session.commit()
                    closed += 1
                else:
                    await managed_session.rollback()
                    skipped += 1
                    logger.info(
                        "Visit session skipped during expiry",
                        session_id=str(session_id),
                        reason=result.reason.value if result.reason else None,
                    )

        summary = {
            "candidates": len(candidates),
            "processed": closed,
            "skipped": skipped,
            "failed": len(errors),
            "forced_hours": hours,
            "errors": errors,
        }
        span.set_attribute("membership.sweep.processed", closed)
        span.set_attribute("membership.sweep.failed", len(errors))

    logger.bind(summary=summary).info("Visit session expiry sweep completed")
    return summary


__all__ = ["run_visit_expiry_sweep"]
