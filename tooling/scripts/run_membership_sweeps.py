"""Run the membership maintenance sweeps once.

Intended usage: manual invocation or an external cron when the in-process
scheduler is disabled.

Example:
    python tooling/scripts/run_membership_sweeps.py --job visit-expiry --forced-hours 5
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from loguru import logger

JOBS = ("visit-expiry", "fee-collection", "all")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute membership sweeps once")
    parser.add_argument("--job", choices=JOBS, default="all", help="Which sweep to run.")
    parser.add_argument(
        "--forced-hours",
        type=float,
        default=None,
        help="Hours billed for sessions closed by the visit-expiry sweep.",
    )
    parser.add_argument(
        "--max-open-hours",
        type=float,
        default=None,
        help="Close pending sessions checked in at least this many hours ago.",
    )
    return parser.parse_args()


async def _run(job: str, forced_hours: float | None, max_open_hours: float | None) -> dict[str, dict[str, Any]]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from clubhouse_api.db.session import async_session  # type: ignore import-position
    from clubhouse_api.jobs.membership import (  # type: ignore import-position
        run_fee_collection_sweep,
        run_visit_expiry_sweep,
    )

    summaries: dict[str, dict[str, Any]] = {}
    if job in {"visit-expiry", "all"}:
        summaries["visit-expiry"] = await run_visit_expiry_sweep(
            session_factory=async_session,
            forced_hours=forced_hours,
            max_open_hours=max_open_hours,
        )
    if job in {"fee-collection", "all"}:
        summaries["fee-collection"] = await run_fee_collection_sweep(session_factory=async_session)
    return summaries


def main() -> int:
    args = parse_args()
    summaries = asyncio.run(_run(args.job, args.forced_hours, args.max_open_hours))
    failed = 0
    for name, summary in summaries.items():
        failed += int(summary.get("failed", 0))
        logger.success(
            "Membership sweep completed",
            job=name,
            candidates=summary.get("candidates", 0),
            processed=summary.get("processed", 0),
            failed=summary.get("failed", 0),
        )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
