from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from clubhouse_api.app import create_app
from clubhouse_api.core.settings import settings
from clubhouse_api.observability.membership import get_membership_store
from clubhouse_api.observability.scheduler import get_membership_scheduler_store
from clubhouse_api.services.membership import VisitSessionTracker


def test_membership_store_accumulates_counters() -> None:
    store = get_membership_store()
    store.reset()

    store.record_check_in(waived=True)
    store.record_check_in(waived=False)
    store.record_check_out(points_charged=30, forced=True)
    store.record_ledger_post("spend", 30)
    store.record_fee_outcome("failed")
    store.record_redemption_decision("rejected:hourly_exceeded")

    snapshot = store.snapshot().as_dict()
    assert snapshot["visits"] == {"check_ins": 2, "waived_check_ins": 1, "check_outs": 1, "forced_check_outs": 1}
    assert snapshot["points"]["visit_points_charged"] == 30
    assert snapshot["points"]["spend_total"] == 30
    assert snapshot["fees"] == {"failed": 1}
    assert snapshot["redemptions"] == {"rejected:hourly_exceeded": 1}


@pytest.mark.asyncio
async def test_engine_operations_feed_the_membership_store(session_factory, enroll_member, venue_clock) -> None:
    store = get_membership_store()
    store.reset()

    async with session_factory() as session:
        enrollment = await enroll_member(session, now=venue_clock(2026, 9, 1, 9, 0), opening_points=400)
        tracker = VisitSessionTracker(session)
        visit = (await tracker.open_session(enrollment.member.id, now=venue_clock(2026, 9, 1, 10, 0))).unwrap()
        (await tracker.close_session(visit.id, now=venue_clock(2026, 9, 1, 11, 0))).unwrap()

    snapshot = store.snapshot()
    assert snapshot.fees == {"paid": 1}
    assert snapshot.visits["check_ins"] == 1
    assert snapshot.visits["check_outs"] == 1
    assert snapshot.points["earn_entries"] == 1
    assert snapshot.points["spend_entries"] == 2


@pytest.mark.asyncio
async def test_observability_endpoints_require_key() -> None:
    app = create_app()

    previous_key = settings.admin_api_key
    settings.admin_api_key = "ops-key"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            denied = await client.get("/api/v1/observability/membership")
            allowed = await client.get("/api/v1/observability/membership", headers={"X-API-Key": "ops-key"})
        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert set(allowed.json()) == {"visits", "points", "fees", "redemptions"}
    finally:
        settings.admin_api_key = previous_key


@pytest.mark.asyncio
async def test_scheduler_snapshot_without_running_scheduler() -> None:
    get_membership_scheduler_store().reset()
    app = create_app()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/observability/scheduler")

    assert response.status_code == 200
    payload = response.json()
    assert payload["running"] is False
    assert payload["totals"] == {}
