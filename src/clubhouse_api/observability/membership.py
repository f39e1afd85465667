from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class MembershipSnapshot:
    visits: Dict[str, int]
    points: Dict[str, int]
    fees: Dict[str, int]
    redemptions: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "visits": dict(self.visits),
            "points": dict(self.points),
            "fees": dict(self.fees),
            "redemptions": dict(self.redemptions),
        }


class MembershipObservabilityStore:
    """Collect entitlement engine counters for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._visits: Dict[str, int] = defaultdict(int)
        self._points: Dict[str, int] = defaultdict(int)
        self._fees: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)

    def record_check_in(self, *, waived: bool) -> None:
        with self._lock:
            self._visits["check_ins"] += 1
            if waived:
                self._visits["waived_check_ins"] += 1

    def record_check_out(self, *, points_charged: int, forced: bool) -> None:
        with self._lock:
            self._visits["check_outs"] += 1
            if forced:
                self._visits["forced_check_outs"] += 1
            self._points["visit_points_charged"] += points_charged

    def record_ledger_post(self, direction: str, amount: int) -> None:
        with self._lock:
            self._points[f"{direction}_entries"] += 1
            self._points[f"{direction}_total"] += amount

    def record_fee_outcome(self, status: str) -> None:
        with self._lock:
            self._fees[status] += 1

    def record_redemption_decision(self, decision: str) -> None:
        with self._lock:
            self._redemptions[decision] += 1

    def snapshot(self) -> MembershipSnapshot:
        with self._lock:
            return MembershipSnapshot(
                visits=dict(self._visits),
                points=dict(self._points),
                fees=dict(self._fees),
                redemptions=dict(self._redemptions),
            )

    def reset(self) -> None:
        with self._lock:
            self._visits.clear()
            self._points.clear()
            self._fees.clear()
            self._redemptions.clear()


_STORE = MembershipObservabilityStore()


def get_membership_store() -> MembershipObservabilityStore:
    return _STORE


__all__ = ["get_membership_store", "MembershipObservabilityStore", "MembershipSnapshot"]
