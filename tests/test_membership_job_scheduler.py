from pathlib import Path

import pytest

from clubhouse_api.observability.scheduler import get_membership_scheduler_store
from clubhouse_api.scheduling.config import JobDefinition, load_job_definitions
from clubhouse_api.scheduling.runner import MembershipJobScheduler
from clubhouse_api.services.membership import ConcurrentUpdateError


def _job(job_id: str, *, max_attempts: int = 3) -> JobDefinition:
    return JobDefinition(
        id=job_id,
        task="tests.sweep",
        cron="* * * * *",
        kwargs={},
        max_attempts=max_attempts,
        base_backoff_seconds=0.0,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.0,
        jitter_seconds=0.0,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_transient_failures(tmp_path: Path) -> None:
    store = get_membership_scheduler_store()
    store.reset()

    scheduler = MembershipJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_sweep(*, session_factory) -> dict:  # pragma: no cover - exercised in tests
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise ConcurrentUpdateError("visits.close: concurrent update detected")
        return {"processed": 4, "failed": 1}

    job = _job("sweep-alpha")
    summary = await scheduler._wrap_callable(flaky_sweep, job)()

    assert summary == {"processed": 4, "failed": 1}
    assert attempts == 2

    snapshot = store.snapshot()
    assert snapshot.totals["runs"] == 1
    assert snapshot.totals["success"] == 1
    assert snapshot.totals["attempt_failures"] == 1
    assert snapshot.totals["retries"] == 1
    assert snapshot.totals["items_processed"] == 4
    assert snapshot.totals["item_failures"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.last_error is None
    assert job_snapshot.last_summary == {"processed": 4, "failed": 1}


@pytest.mark.asyncio
async def test_scheduler_does_not_retry_logic_errors(tmp_path: Path) -> None:
    store = get_membership_scheduler_store()
    store.reset()

    scheduler = MembershipJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def broken_sweep(*, session_factory) -> None:  # pragma: no cover - exercised in tests
        nonlocal attempts
        attempts += 1
        raise RuntimeError("boom")

    job = _job("sweep-beta")
    result = await scheduler._wrap_callable(broken_sweep, job)()

    assert result is None
    assert attempts == 1
    snapshot = store.snapshot()
    assert snapshot.totals["run_failures"] == 1
    assert snapshot.totals["retries"] == 0
    assert snapshot.jobs[job.id].last_error == "boom"
    assert snapshot.jobs[job.id].totals["consecutive_failures"] == 1


@pytest.mark.asyncio
async def test_scheduler_gives_up_after_max_attempts(tmp_path: Path) -> None:
    store = get_membership_scheduler_store()
    store.reset()

    scheduler = MembershipJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def always_busy(*, session_factory) -> None:  # pragma: no cover - exercised in tests
        raise ConcurrentUpdateError("busy")

    job = _job("sweep-gamma", max_attempts=2)
    await scheduler._wrap_callable(always_busy, job)()

    snapshot = store.snapshot()
    assert snapshot.totals["attempt_failures"] == 2
    assert snapshot.totals["retries"] == 1
    assert snapshot.totals["run_failures"] == 1
    assert snapshot.jobs[job.id].last_attempts == 2


def test_schedule_file_resolves_task_aliases(tmp_path: Path) -> None:
    config_path = tmp_path / "schedules.toml"
    config_path.write_text(
        """
timezone = "UTC"

[jobs.visit_expiry]
task = "visit_expiry"
cron = "5 0 * * *"
max_attempts = 3

[jobs.visit_expiry.kwargs]
forced_hours = 5

[jobs.fee_collection]
task = "fee_collection"
cron = "15 0 * * *"
enabled = false

[jobs.broken]
cron = "* * * * *"
"""
    )

    config = load_job_definitions(config_path)

    assert config.timezone == "UTC"
    assert [job.id for job in config.jobs] == ["visit_expiry", "fee_collection"]
    expiry, fees = config.jobs
    assert expiry.kwargs == {"forced_hours": 5}
    assert expiry.max_attempts == 3
    assert not fees.enabled

    scheduler = MembershipJobScheduler(session_factory=lambda: None, config_path=config_path)
    resolved = scheduler._resolve_callable(expiry)
    assert resolved.__name__ == "run_visit_expiry_sweep"


def test_repository_schedule_loads() -> None:
    config_path = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"
    config = load_job_definitions(config_path)
    assert {job.task for job in config.jobs} == {"visit_expiry", "fee_collection"}


@pytest.mark.asyncio
async def test_run_job_now_requires_registered_job(tmp_path: Path) -> None:
    scheduler = MembershipJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")
    with pytest.raises(KeyError):
        await scheduler.run_job_now("missing")
