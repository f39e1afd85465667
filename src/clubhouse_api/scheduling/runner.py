"""APScheduler runtime for the membership maintenance sweeps."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from clubhouse_api.observability.scheduler import get_membership_scheduler_store
from clubhouse_api.services.membership.errors import TransientStoreError

from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]

TASK_ALIASES: dict[str, str] = {
    "visit_expiry": "clubhouse_api.jobs.membership.visit_expiry.run_visit_expiry_sweep",
    "fee_collection": "clubhouse_api.jobs.membership.fee_collection.run_fee_collection_sweep",
}


class MembershipJobScheduler:
    """Runs the visit-expiry and fee-collection sweeps on cron triggers.

    Only :class:`TransientStoreError` failures are retried; anything else
    fails the run immediately.
    """

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._runners: dict[str, Callable[[], Awaitable[Any]]] = {}
        self._is_running = False
        self._observability = get_membership_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        for job in config.jobs:
            if not job.enabled:
                logger.info("Membership job disabled in schedule", job_id=job.id, task=job.task)
                continue
            runner = self._wrap_callable(self._resolve_callable(job), job)
            self._runners[job.id] = runner
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(runner, trigger=trigger, id=job.id, replace_existing=True, coalesce=True)
            logger.info("Registered membership job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._is_running = True
        logger.info("Membership job scheduler started", jobs=len(self._runners), timezone=config.timezone)

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._is_running = False
        logger.info("Membership job scheduler stopped")

    async def run_job_now(self, job_id: str) -> Mapping[str, Any] | None:
        """Run a registered job immediately, outside its cron trigger."""

        runner = self._runners.get(job_id)
        if runner is None:
            raise KeyError(job_id)
        return await runner()

    def _resolve_callable(self, job: JobDefinition) -> JobCallable:
        task_path = TASK_ALIASES.get(job.task, job.task)
        module_name, _, attr = task_path.rpartition(".")
        if not module_name:
            raise ValueError(f"Invalid task path: {job.task}")
        func = getattr(import_module(module_name), attr, None)
        if func is None:
            raise AttributeError(f"Task {job.task} not found")
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"Task {job.task} must be an async function")
        return func

    def _backoff_delay(self, job: JobDefinition, attempt: int) -> float:
        delay = job.base_backoff_seconds * (job.backoff_multiplier ** (attempt - 1))
        if job.max_backoff_seconds:
            delay = min(delay, job.max_backoff_seconds)
        if job.jitter_seconds:
            delay += random.uniform(0, job.jitter_seconds)
        return max(delay, 0.0)

    def _wrap_callable(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        async def _runner() -> Mapping[str, Any] | None:
            max_attempts = max(job.max_attempts, 1)
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, max_attempts + 1):
                try:
                    summary = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:  # noqa: BLE001 - reported to the scheduler store
                    error_message = str(exc) or exc.__class__.__name__
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error_message)
                    retryable = isinstance(exc, TransientStoreError)
                    if attempt >= max_attempts or not retryable:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error_message,
                        )
                        logger.exception(
                            "Membership job failed",
                            job_id=job.id,
                            task=job.task,
                            attempts=attempt,
                            retryable=retryable,
                        )
                        return None

                    delay = self._backoff_delay(job, attempt)
                    self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                    logger.warning(
                        "Membership job retrying",
                        job_id=job.id,
                        task=job.task,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                    )
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=runtime_seconds,
                    attempts=attempt,
                    summary=summary if isinstance(summary, Mapping) else None,
                )
                logger.info(
                    "Membership job completed",
                    job_id=job.id,
                    task=job.task,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                )
                return summary
            return None

        return _runner

    def health(self) -> dict[str, object]:
        snapshot = self._observability.snapshot()
        config_jobs = self._config.jobs if self._config else []
        jobs: list[dict[str, object]] = []
        for job in config_jobs:
            metrics = snapshot.jobs.get(job.id)
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "enabled": job.enabled,
                    "max_attempts": job.max_attempts,
                    "metrics": metrics.as_dict() if metrics else None,
                }
            )
        return {
            "running": self._is_running,
            "configured_jobs": len(config_jobs),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["MembershipJobScheduler", "TASK_ALIASES"]
