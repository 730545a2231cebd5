"""Load recurring maintenance jobs from a TOML schedule file."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import tomllib


def _positive_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Exponential backoff applied between failed attempts of one run."""

    max_attempts: int = 1
    base_backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    jitter_seconds: float = 1.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "RetryPolicy":
        defaults = cls()
        return cls(
            max_attempts=max(int(payload.get("max_attempts") or defaults.max_attempts), 1),
            base_backoff_seconds=_positive_float(payload.get("base_backoff_seconds", defaults.base_backoff_seconds)) or 0.0,
            backoff_multiplier=max(_positive_float(payload.get("backoff_multiplier")) or defaults.backoff_multiplier, 1.0),
            max_backoff_seconds=_positive_float(payload.get("max_backoff_seconds", defaults.max_backoff_seconds)) or 0.0,
            jitter_seconds=_positive_float(payload.get("jitter_seconds", defaults.jitter_seconds)) or 0.0,
        )

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (2 for the first retry)."""

        delay = self.base_backoff_seconds * self.backoff_multiplier ** max(attempt - 2, 0)
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        if self.jitter_seconds:
            delay += random.uniform(0, self.jitter_seconds)
        return delay


@dataclass(slots=True)
class JobDefinition:
    """A scheduled task. Exactly one of ``cron`` or ``interval_seconds`` is set."""

    id: str
    task: str
    cron: str | None = None
    interval_seconds: float | None = None
    kwargs: dict[str, Any] = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_entry(cls, key: str, payload: Mapping[str, Any]) -> "JobDefinition | None":
        task = payload.get("task")
        if not isinstance(task, str) or not task:
            return None

        cron = payload.get("cron")
        cron = cron.strip() if isinstance(cron, str) and cron.strip() else None
        interval = None if cron else _positive_float(payload.get("interval_seconds"))
        if cron is None and interval is None:
            return None

        kwargs = payload.get("kwargs")
        return cls(
            id=str(payload.get("id") or key),
            task=task,
            cron=cron,
            interval_seconds=interval,
            kwargs=dict(kwargs) if isinstance(kwargs, Mapping) else {},
            retry=RetryPolicy.from_mapping(payload),
        )

    @property
    def trigger_description(self) -> str:
        if self.cron:
            return f"cron:{self.cron}"
        return f"interval:{self.interval_seconds:g}s"


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Parse ``config_path``; entries lacking a task or a usable trigger are ignored."""

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    entries = data.get("jobs") or {}
    jobs = [
        job
        for key, payload in entries.items()
        if isinstance(payload, Mapping) and (job := JobDefinition.from_entry(key, payload)) is not None
    ]
    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "RetryPolicy", "ScheduleConfig", "load_job_definitions"]
