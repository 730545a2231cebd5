from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


@dataclass
class GrantLifecycleSnapshot:
    actions: Dict[str, int]
    conflicts: Dict[str, int]
    sweeps: Dict[str, int]
    audit: Dict[str, int]
    last_sweep_at: datetime | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "actions": dict(self.actions),
            "conflicts": dict(self.conflicts),
            "sweeps": dict(self.sweeps),
            "audit": dict(self.audit),
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
        }


class GrantObservabilityStore:
    """Collect grant lifecycle telemetry for readiness checks and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._actions: Dict[str, int] = defaultdict(int)
        self._conflicts: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)
        self._audit: Dict[str, int] = defaultdict(int)
        self._last_sweep_at: datetime | None = None

    def record_action(self, action: str) -> None:
        with self._lock:
            self._actions[action] += 1

    def record_conflict(self, code: str) -> None:
        with self._lock:
            self._conflicts[code] += 1

    def record_sweep(self, *, expired: int, skipped: bool = False) -> None:
        with self._lock:
            if skipped:
                self._sweeps["skipped"] += 1
                return
            self._sweeps["runs"] += 1
            self._sweeps["expired"] += expired
            self._last_sweep_at = datetime.now(timezone.utc)

    def record_audit(self, *, delivered: bool) -> None:
        with self._lock:
            self._audit["delivered" if delivered else "failed"] += 1

    def snapshot(self) -> GrantLifecycleSnapshot:
        with self._lock:
            return GrantLifecycleSnapshot(
                actions=dict(self._actions),
                conflicts=dict(self._conflicts),
                sweeps=dict(self._sweeps),
                audit=dict(self._audit),
                last_sweep_at=self._last_sweep_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._actions.clear()
            self._conflicts.clear()
            self._sweeps.clear()
            self._audit.clear()
            self._last_sweep_at = None


_STORE = GrantObservabilityStore()


def get_grant_store() -> GrantObservabilityStore:
    return _STORE


__all__ = ["GrantLifecycleSnapshot", "GrantObservabilityStore", "get_grant_store"]
