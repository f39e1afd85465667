from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _enroll(client: AsyncClient, **overrides) -> dict:
    payload = {"displayName": "Avery", "openingPoints": 500, "collectInitialFee": True, **overrides}
    response = await client.post("/api/v1/members", json=payload, headers={"X-Actor": "front-desk"})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_visit_and_redemption_flow(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    # keep the flow independent of the wall clock's venue-local hour
    monkeypatch.setattr(
        "clubhouse_api.services.membership.redemptions.is_past_cutoff",
        lambda *args, **kwargs: False,
    )

    async with _client(app) as client:
        member = await _enroll(client, email="avery@example.com")
        assert member["status"] == "active"
        assert member["pointBalance"] == 350
        member_headers = {"X-Session-User": member["id"]}

        check_in = await client.post("/api/v1/visits/check-in", json={"memberId": member["id"]})
        assert check_in.status_code == 201
        visit = check_in.json()
        assert visit["status"] == "pending"

        duplicate = await client.post("/api/v1/visits/check-in", json={"memberId": member["id"]})
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"]["reason"] == "already_open"

        eligibility = await client.post("/api/v1/redemptions/eligibility", json={"quantity": 1}, headers=member_headers)
        assert eligibility.status_code == 200
        assert eligibility.json()["allowed"] is True
        assert eligibility.json()["sessionId"] == visit["id"]

        requested = await client.post(
            "/api/v1/redemptions",
            json={"sessionId": visit["id"], "quantity": 1, "productName": "Iced tea"},
            headers=member_headers,
        )
        assert requested.status_code == 201, requested.text
        item = requested.json()
        assert item["status"] == "pending-selection"

        blocked = await client.post("/api/v1/redemptions/eligibility", json={"quantity": 1}, headers=member_headers)
        assert blocked.json()["allowed"] is False
        assert blocked.json()["reason"] == "hourly_exceeded"

        confirm = await client.post(
            f"/api/v1/redemptions/items/{item['id']}/confirm",
            json={"productRef": "drink-iced-tea", "quantity": 1},
            headers={"X-Actor": "bar-1"},
        )
        assert confirm.status_code == 200
        assert confirm.json()["status"] == "completed"
        assert confirm.json()["confirmedBy"] == "bar-1"

        confirm_again = await client.post(
            f"/api/v1/redemptions/items/{item['id']}/confirm",
            json={"productRef": "drink-iced-tea", "quantity": 1},
        )
        assert confirm_again.status_code == 409
        assert confirm_again.json()["detail"]["reason"] == "already_confirmed"

        session_view = await client.get(f"/api/v1/redemptions/sessions/{visit['id']}")
        assert session_view.status_code == 200
        assert session_view.json()["mirrorConsistent"] is True
        assert len(session_view.json()["items"]) == 1

        limits = await client.get("/api/v1/redemptions/me/limits", headers=member_headers)
        assert limits.status_code == 200
        assert limits.json()["used"]["total"] == 1
        assert limits.json()["remaining"]["total"] == 24

        check_out = await client.post(f"/api/v1/visits/{visit['id']}/check-out", json={"forcedHours": 2})
        assert check_out.status_code == 200
        closed = check_out.json()
        assert closed["status"] == "completed"
        assert closed["pointsCharged"] == 50
        assert closed["redemptions"][0]["productRef"] == "drink-iced-tea"

        balance = await client.get("/api/v1/points/me", headers=member_headers)
        assert balance.json()["pointBalance"] == 300

        ledger = await client.get("/api/v1/points/me/ledger", headers=member_headers)
        sources = [entry["source"] for entry in ledger.json()["entries"]]
        assert sources == ["visit", "membership_fee", "registration"]

        history = await client.get(f"/api/v1/visits/members/{member['id']}")
        assert len(history.json()) == 1


@pytest.mark.asyncio
async def test_points_admin_endpoints(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        member = await _enroll(client, openingPoints=0, collectInitialFee=False)
        member_id = member["id"]

        reload = await client.post(
            f"/api/v1/points/members/{member_id}/reload",
            json={"amount": 200, "reference": "rcpt-001"},
        )
        assert reload.status_code == 201
        assert reload.json()["pointBalance"] == 200
        assert reload.json()["entry"]["source"] == "reload"
        assert reload.json()["entry"]["relatedId"] == "rcpt-001"

        adjustment = await client.post(
            f"/api/v1/points/members/{member_id}/adjustments",
            json={"delta": -25, "reason": "Locker key not returned"},
        )
        assert adjustment.status_code == 201
        assert adjustment.json()["pointBalance"] == 175
        assert adjustment.json()["entry"]["direction"] == "spend"

        invalid = await client.post(f"/api/v1/points/members/{member_id}/reload", json={"amount": 0})
        assert invalid.status_code == 422

        audit = await client.get(f"/api/v1/points/members/{member_id}/audit")
        assert audit.json()["consistent"] is True
        assert audit.json()["ledgerSum"] == 175

        page = await client.get(f"/api/v1/points/members/{member_id}/ledger", params={"limit": 1})
        assert len(page.json()["entries"]) == 1
        assert page.json()["nextCursor"]

        bad_cursor = await client.get(f"/api/v1/points/members/{member_id}/ledger", params={"cursor": "%%%"})
        assert bad_cursor.status_code == 400

        missing = await client.post(f"/api/v1/points/members/{uuid4()}/reload", json={"amount": 5})
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_fee_endpoints_and_inactive_check_in(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        member = await _enroll(client, openingPoints=100, collectInitialFee=False)
        member_headers = {"X-Session-User": member["id"]}

        blocked = await client.post("/api/v1/visits/check-in", json={"memberId": member["id"]})
        assert blocked.status_code == 403
        assert blocked.json()["detail"]["reason"] == "member_inactive"

        records = await client.get("/api/v1/membership-fees/me", headers=member_headers)
        assert records.status_code == 200
        [initial] = records.json()
        assert initial["status"] == "pending"
        assert initial["renewalType"] == "initial"

        deduct = await client.post(f"/api/v1/membership-fees/{initial['id']}/deduct")
        assert deduct.status_code == 200
        body = deduct.json()
        assert body["record"]["status"] == "failed"
        assert body["balanceAfter"] == -50
        assert body["memberStatus"] == "inactive"
        assert body["nextRecord"] is None

        again = await client.post(f"/api/v1/membership-fees/{initial['id']}/deduct")
        assert again.status_code == 409
        assert again.json()["detail"]["reason"] == "already_processed"

        period = await client.get("/api/v1/membership-fees/me/period", headers=member_headers)
        assert period.json()["end"] is None


@pytest.mark.asyncio
async def test_entitlement_config_round_trip(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        defaults = await client.get("/api/v1/entitlement-config/redemption")
        assert defaults.json()["dailyLimit"] == 3
        assert defaults.json()["cutoffTime"] == "23:00"

        updated = await client.put(
            "/api/v1/entitlement-config/redemption",
            json={"dailyLimit": 5, "totalLimit": 30, "hourlyLimit": 2, "cutoffTime": "22:00", "milestones": []},
        )
        assert updated.status_code == 200
        assert (await client.get("/api/v1/entitlement-config/redemption")).json()["hourlyLimit"] == 2

        invalid = await client.put("/api/v1/entitlement-config/redemption", json={"cutoffTime": "25:00"})
        assert invalid.status_code == 422

        fees = await client.put(
            "/api/v1/entitlement-config/membership-fee",
            json={"annualFees": [{"startDate": "2026-01-01", "amount": 900, "hourlyRate": 8}]},
        )
        assert fees.status_code == 200
        assert fees.json()["annualFees"][0]["amount"] == 900


@pytest.mark.asyncio
async def test_member_endpoints_require_session_header(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        missing = await client.get("/api/v1/points/me")
        assert missing.status_code == 401

        malformed = await client.get("/api/v1/points/me", headers={"X-Session-User": "not-a-uuid"})
        assert malformed.status_code == 400

        unknown = await client.get("/api/v1/members/me", headers={"X-Session-User": str(uuid4())})
        assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_duplicate_email_is_conflict(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await _enroll(client, email="dup@example.com")
        response = await client.post("/api/v1/members", json={"displayName": "Again", "email": "dup@example.com"})
        assert response.status_code == 409


@pytest.mark.asyncio
async def test_manual_sweep_endpoints(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await _enroll(client, collectInitialFee=False)

        fees = await client.post("/api/v1/membership-jobs/fee-collection/run")
        assert fees.status_code == 200
        assert fees.json()["paid"] == 1

        visits = await client.post("/api/v1/membership-jobs/visit-expiry/run", json={"forcedHours": 5})
        assert visits.status_code == 200
        assert visits.json()["candidates"] == 0
