"""Observability store for the membership maintenance scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Mapping


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class SweepJobSnapshot:
    """Serializable view of one scheduled sweep."""

    job_id: str
    task: str
    totals: Dict[str, int]
    runtime_seconds: float
    last_started_at: datetime | None
    last_success_at: datetime | None
    last_error_at: datetime | None
    last_error: str | None
    last_attempts: int
    last_retry_delay_seconds: float | None
    last_summary: Dict[str, Any] | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": self.totals,
            "runtime_seconds": self.runtime_seconds,
            "last_started_at": _iso(self.last_started_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_retry_delay_seconds": self.last_retry_delay_seconds,
            "last_summary": self.last_summary,
        }


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, SweepJobSnapshot]

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "jobs": {job_id: snapshot.as_dict() for job_id, snapshot in self.jobs.items()},
        }


@dataclass
class _SweepJobState:
    job_id: str
    task: str
    runs: int = 0
    success: int = 0
    run_failures: int = 0
    attempt_failures: int = 0
    retries: int = 0
    items_processed: int = 0
    item_failures: int = 0
    consecutive_failures: int = 0
    runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_retry_delay_seconds: float | None = None
    last_summary: Dict[str, Any] | None = field(default=None)

    def snapshot(self) -> SweepJobSnapshot:
        return SweepJobSnapshot(
            job_id=self.job_id,
            task=self.task,
            totals={
                "runs": self.runs,
                "success": self.success,
                "run_failures": self.run_failures,
                "attempt_failures": self.attempt_failures,
                "retries": self.retries,
                "items_processed": self.items_processed,
                "item_failures": self.item_failures,
                "consecutive_failures": self.consecutive_failures,
            },
            runtime_seconds=self.runtime_seconds,
            last_started_at=self.last_started_at,
            last_success_at=self.last_success_at,
            last_error_at=self.last_error_at,
            last_error=self.last_error,
            last_attempts=self.last_attempts,
            last_retry_delay_seconds=self.last_retry_delay_seconds,
            last_summary=self.last_summary,
        )


class MembershipSchedulerObservabilityStore:
    """Tracks dispatches, retries and per-item outcomes of membership sweeps."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, _SweepJobState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> _SweepJobState:
        state = self._jobs.get(job_id)
        if state is None:
            state = _SweepJobState(job_id=job_id, task=task)
            self._jobs[job_id] = state
        state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.runs += 1
            state.last_started_at = _utcnow()
            state.last_attempts = 0
            state.last_retry_delay_seconds = None

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.attempt_failures += 1
            state.consecutive_failures += 1
            state.last_error = error
            state.last_error_at = _utcnow()
            state.last_attempts = attempts

    def record_retry(self, job_id: str, task: str, *, delay_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_retry_delay_seconds = delay_seconds
            state.last_attempts = attempts

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        summary: Mapping[str, Any] | None = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.success += 1
            state.runtime_seconds += runtime_seconds
            state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.consecutive_failures = 0
            state.last_error = None
            state.last_error_at = None
            if summary is not None:
                state.last_summary = dict(summary)
                state.items_processed += int(summary.get("processed", 0) or 0)
                state.item_failures += int(summary.get("failed", 0) or 0)

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.run_failures += 1
            state.runtime_seconds += runtime_seconds
            state.last_error = error
            state.last_error_at = _utcnow()
            state.last_attempts = attempts

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {job_id: state.snapshot() for job_id, state in self._jobs.items()}
        totals: Dict[str, int] = {}
        for job in jobs.values():
            for key in ("runs", "success", "run_failures", "attempt_failures", "retries", "items_processed", "item_failures"):
                totals[key] = totals.get(key, 0) + job.totals[key]
        return SchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = MembershipSchedulerObservabilityStore()


def get_membership_scheduler_store() -> MembershipSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "MembershipSchedulerObservabilityStore",
    "SchedulerSnapshot",
    "get_membership_scheduler_store",
]
