import asyncio
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from clubhouse_api.api.v1.endpoints._common import commit
from clubhouse_api.core.settings import settings
from clubhouse_api.services.membership import (
    ConcurrentUpdateError,
    DeadlineExceededError,
    RedemptionEntitlementEngine,
    StoreUnavailableError,
)
from clubhouse_api.services.membership.errors import translate_store_errors, within_deadline


@pytest.mark.asyncio
async def test_within_deadline_aborts_slow_calls() -> None:
    with pytest.raises(DeadlineExceededError) as excinfo:
        await within_deadline(asyncio.sleep(1), timeout=0.01, operation="tests.sleep")

    assert "tests.sleep" in str(excinfo.value)


@pytest.mark.asyncio
async def test_within_deadline_passes_results_through() -> None:
    async def quick() -> int:
        return 7

    assert await within_deadline(quick(), timeout=1.0, operation="tests.quick") == 7
    assert await within_deadline(quick(), timeout=None, operation="tests.unbounded") == 7


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (StaleDataError("version mismatch"), ConcurrentUpdateError),
        (IntegrityError("INSERT", {}, Exception("unique")), ConcurrentUpdateError),
        (OperationalError("UPDATE", {}, Exception("database is locked")), StoreUnavailableError),
        (asyncio.TimeoutError(), DeadlineExceededError),
    ],
)
async def test_store_failures_become_transient_errors(raised, expected) -> None:
    with pytest.raises(expected) as excinfo:
        async with translate_store_errors("tests.write"):
            raise raised

    assert excinfo.value.__cause__ is raised


async def _enroll(client: AsyncClient) -> dict:
    response = await client.post("/api/v1/members", json={"displayName": "Rory", "openingPoints": 500})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_transient_errors_map_to_503_with_retry_after(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db

    async def conflicting_request(self, *args, **kwargs):
        raise ConcurrentUpdateError("redemptions.append: concurrent update detected")

    monkeypatch.setattr(RedemptionEntitlementEngine, "request_redemption", conflicting_request)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        member = await _enroll(client)
        response = await client.post(
            "/api/v1/redemptions",
            json={"sessionId": str(uuid4()), "quantity": 1},
            headers={"X-Session-User": member["id"]},
        )

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"
    assert response.json()["detail"]["reason"] == "transient_store_error"


@pytest.mark.asyncio
async def test_store_deadline_maps_to_503(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db

    async def slow_request(self, *args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(RedemptionEntitlementEngine, "request_redemption", slow_request)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        member = await _enroll(client)
        monkeypatch.setattr(settings, "store_operation_timeout_seconds", 0.01)
        response = await client.post(
            "/api/v1/redemptions",
            json={"sessionId": str(uuid4()), "quantity": 1},
            headers={"X-Session-User": member["id"]},
        )

    assert response.status_code == 503
    assert "deadline" in response.json()["detail"]["message"]


@pytest.mark.asyncio
async def test_endpoint_commit_translates_lock_failures(session_factory, monkeypatch) -> None:
    async with session_factory() as session:
        async def locked_commit() -> None:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "commit", locked_commit)

        with pytest.raises(StoreUnavailableError) as excinfo:
            await commit(session, "visits.check_in")

    assert "visits.check_in.commit" in str(excinfo.value)
