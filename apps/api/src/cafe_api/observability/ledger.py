from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LedgerSnapshot:
    points: Dict[str, int]
    guards: Dict[str, int]
    transitions: Dict[str, int]
    pushes: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "points": dict(self.points),
            "guards": dict(self.guards),
            "transitions": dict(self.transitions),
            "pushes": dict(self.pushes),
        }


class LedgerObservabilityStore:
    """Collect order lifecycle and points ledger telemetry."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._points: Dict[str, int] = defaultdict(int)
        self._guards: Dict[str, int] = defaultdict(int)
        self._transitions: Dict[str, int] = defaultdict(int)
        self._pushes: Dict[str, int] = defaultdict(int)

    def record_points(self, action: str, points: int) -> None:
        with self._lock:
            self._points[f"{action}_entries"] += 1
            self._points[f"{action}_total"] += points

    def record_guard_hit(self, guard: str) -> None:
        with self._lock:
            self._guards[guard] += 1

    def record_transition(self, from_status: str, to_status: str) -> None:
        with self._lock:
            self._transitions[f"{from_status}->{to_status}"] += 1

    def record_transition_failure(self, reason: str) -> None:
        with self._lock:
            self._transitions[f"failed:{reason}"] += 1

    def record_push(self, outcome: str) -> None:
        with self._lock:
            self._pushes[outcome] += 1

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                points=dict(self._points),
                guards=dict(self._guards),
                transitions=dict(self._transitions),
                pushes=dict(self._pushes),
            )

    def reset(self) -> None:
        with self._lock:
            self._points.clear()
            self._guards.clear()
            self._transitions.clear()
            self._pushes.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_store() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["get_ledger_store", "LedgerObservabilityStore", "LedgerSnapshot"]
