"""Loader for the membership maintenance schedule (TOML)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib

from clubhouse_api.core.settings import settings


@dataclass(slots=True)
class JobDefinition:
    """A scheduled sweep and its retry policy."""

    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    max_attempts: int = 1
    base_backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    jitter_seconds: float = 1.0


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]


def _positive_float(payload: dict[str, Any], key: str, default: float, floor: float) -> float:
    value = payload.get(key, default)
    try:
        return max(float(value), floor)
    except (TypeError, ValueError):
        return default


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Parse ``[jobs.<name>]`` tables; entries without a task or cron are ignored.

    The schedule runs in the venue timezone unless the file names another.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    timezone = str(data.get("timezone") or settings.venue_timezone)
    jobs: list[JobDefinition] = []
    for key, payload in (data.get("jobs") or {}).items():
        if not isinstance(payload, dict):
            continue
        task = payload.get("task")
        cron = payload.get("cron")
        if not isinstance(task, str) or not isinstance(cron, str):
            continue
        kwargs = payload.get("kwargs", {})

        jobs.append(
            JobDefinition(
                id=str(payload.get("id") or key),
                task=task,
                cron=cron,
                kwargs=kwargs if isinstance(kwargs, dict) else {},
                enabled=bool(payload.get("enabled", True)),
                max_attempts=max(int(payload.get("max_attempts", 1) or 1), 1),
                base_backoff_seconds=_positive_float(payload, "base_backoff_seconds", 5.0, 0.0),
                backoff_multiplier=_positive_float(payload, "backoff_multiplier", 2.0, 1.0),
                max_backoff_seconds=_positive_float(payload, "max_backoff_seconds", 60.0, 0.0),
                jitter_seconds=_positive_float(payload, "jitter_seconds", 1.0, 0.0),
            )
        )

    return ScheduleConfig(timezone=timezone, jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
