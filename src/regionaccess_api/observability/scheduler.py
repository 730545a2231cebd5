"""In-process counters for scheduled maintenance jobs."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict

JOB_COUNTERS = ("runs", "success", "run_failures", "attempt_failures", "retries", "skipped", "consecutive_failures")
TOTAL_COUNTERS = ("runs", "success", "run_failures", "retries", "skipped")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SchedulerJobSnapshot:
    job_id: str
    task: str
    totals: Dict[str, int]
    total_runtime_seconds: float
    last_started_at: datetime | None
    last_success_at: datetime | None
    last_error_at: datetime | None
    last_error: str | None
    last_attempts: int

    def as_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "job_id": self.job_id,
            "task": self.task,
            "totals": self.totals,
            "total_runtime_seconds": round(self.total_runtime_seconds, 6),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
        }
        for key in ("last_started_at", "last_success_at", "last_error_at"):
            stamp = getattr(self, key)
            payload[key] = stamp.isoformat() if stamp else None
        return payload


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, SchedulerJobSnapshot]

    def as_dict(self) -> Dict[str, object]:
        return {"totals": self.totals, "jobs": {key: job.as_dict() for key, job in self.jobs.items()}}


@dataclass
class _JobState:
    job_id: str
    task: str
    counts: Counter = field(default_factory=Counter)
    runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0

    def fail(self, error: str, attempts: int) -> None:
        self.last_error = error
        self.last_error_at = _utcnow()
        self.last_attempts = attempts

    def freeze(self) -> SchedulerJobSnapshot:
        return SchedulerJobSnapshot(
            job_id=self.job_id,
            task=self.task,
            totals={name: self.counts[name] for name in JOB_COUNTERS},
            total_runtime_seconds=self.runtime_seconds,
            last_started_at=self.last_started_at,
            last_success_at=self.last_success_at,
            last_error_at=self.last_error_at,
            last_error=self.last_error,
            last_attempts=self.last_attempts,
        )


class SchedulerObservabilityStore:
    """Per-job dispatch, retry, failure and overlap-skip counts."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, _JobState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _job(self, job_id: str, task: str) -> _JobState:
        return self._jobs.setdefault(job_id, _JobState(job_id=job_id, task=task))

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._job(job_id, task)
            state.counts["runs"] += 1
            state.last_started_at = _utcnow()
            state.last_attempts = 0

    def record_skip(self, job_id: str, task: str) -> None:
        with self._lock:
            self._job(job_id, task).counts["skipped"] += 1

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._job(job_id, task)
            state.counts["attempt_failures"] += 1
            state.fail(error, attempts)

    def record_retry(self, job_id: str, task: str, *, attempts: int) -> None:
        with self._lock:
            state = self._job(job_id, task)
            state.counts["retries"] += 1
            state.last_attempts = attempts

    def record_success(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._job(job_id, task)
            state.counts["success"] += 1
            state.counts["consecutive_failures"] = 0
            state.runtime_seconds += runtime_seconds
            state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.last_error = state.last_error_at = None

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._job(job_id, task)
            state.counts.update(run_failures=1, consecutive_failures=1)
            state.runtime_seconds += runtime_seconds
            state.fail(error, attempts)

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {job_id: state.freeze() for job_id, state in self._jobs.items()}
        totals = {name: sum(job.totals[name] for job in jobs.values()) for name in TOTAL_COUNTERS}
        return SchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = SchedulerObservabilityStore()


def get_scheduler_store() -> SchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = ["SchedulerObservabilityStore", "SchedulerSnapshot", "get_scheduler_store"]
