"""APScheduler host for the recurring grant maintenance jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from regionaccess_api.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_job_definitions

JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(path: str) -> JobCallable:
    """Import ``package.module.function`` and require an async callable."""

    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ValueError(f"Task path must be dotted: {path}")
    target = getattr(import_module(module_name), attr, None)
    if target is None:
        raise AttributeError(f"Task {path} not found")
    if not inspect.iscoroutinefunction(target):
        raise TypeError(f"Task {path} must be an async function")
    return target


def build_trigger(job: JobDefinition, timezone: ZoneInfo) -> BaseTrigger:
    if job.cron:
        return CronTrigger.from_crontab(job.cron, timezone=timezone)
    if job.interval_seconds:
        return IntervalTrigger(seconds=job.interval_seconds, timezone=timezone)
    raise ValueError(f"Job {job.id} has neither cron nor interval_seconds")


class JobScheduler:
    """Own the AsyncIOScheduler that drives expiry sweeps and other upkeep.

    A job never overlaps itself. A tick that fires while the previous run is
    still in flight is counted as skipped and dropped.
    """

    def __init__(self, *, session_factory: Callable[[], Any], config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False
        self._in_flight: set[str] = set()
        self._store = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)
        scheduler.add_listener(self._on_tick_dropped, EVENT_JOB_MAX_INSTANCES)

        for job in config.jobs:
            scheduler.add_job(
                self._wrap_callable(resolve_task(job.task), job),
                trigger=build_trigger(job, timezone),
                id=job.id,
                name=job.task,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Scheduled job registered", job_id=job.id, task=job.task, trigger=job.trigger_description)

        scheduler.start()
        self._config, self._scheduler, self._is_running = config, scheduler, True
        logger.info("Job scheduler started", jobs=len(config.jobs), timezone=config.timezone)

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        outcome = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(outcome):
            await outcome
        self._scheduler, self._is_running = None, False
        logger.info("Job scheduler stopped")

    def _on_tick_dropped(self, event: JobSubmissionEvent) -> None:
        job = self._scheduler.get_job(event.job_id) if self._scheduler else None
        task = job.name if job else "unknown"
        self._store.record_skip(event.job_id, task)
        logger.warning("Scheduled tick dropped; previous run still active", job_id=event.job_id, task=task)

    def _wrap_callable(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        async def run_job() -> Any:
            if job.id in self._in_flight:
                self._store.record_skip(job.id, job.task)
                logger.warning("Scheduled tick dropped; previous run still active", job_id=job.id, task=job.task)
                return None
            self._in_flight.add(job.id)
            try:
                return await self._execute(func, job)
            finally:
                self._in_flight.discard(job.id)

        return run_job

    async def _execute(self, func: JobCallable, job: JobDefinition) -> Any:
        """Run one scheduled invocation, retrying per the job's policy."""

        policy = job.retry
        self._store.record_dispatch(job.id, job.task)
        started = time.perf_counter()
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await func(session_factory=self._session_factory, **job.kwargs)
            except Exception as exc:
                self._store.record_attempt_failure(job.id, job.task, attempts=attempt, error=str(exc))
                if attempt >= policy.max_attempts:
                    self._store.record_run_failure(
                        job.id,
                        job.task,
                        runtime_seconds=time.perf_counter() - started,
                        attempts=attempt,
                        error=str(exc),
                    )
                    logger.exception("Scheduled job gave up", job_id=job.id, task=job.task, attempts=attempt)
                    return None

                delay = policy.delay_before(attempt + 1)
                self._store.record_retry(job.id, job.task, attempts=attempt + 1)
                logger.warning(
                    "Scheduled job attempt failed; retrying",
                    job_id=job.id,
                    attempt=attempt + 1,
                    delay_seconds=round(delay, 3),
                    error=str(exc),
                )
                if delay > 0:
                    await asyncio.sleep(delay)
                continue

            elapsed = time.perf_counter() - started
            self._store.record_success(job.id, job.task, runtime_seconds=elapsed, attempts=attempt)
            logger.info("Scheduled job finished", job_id=job.id, attempts=attempt, runtime_seconds=round(elapsed, 3))
            return result

    def health(self) -> dict[str, object]:
        snapshot = self._store.snapshot()
        jobs = self._config.jobs if self._config else []
        return {
            "running": self._is_running,
            "configured_jobs": len(jobs),
            "totals": snapshot.totals,
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "trigger": job.trigger_description,
                    "max_attempts": job.retry.max_attempts,
                    "running": job.id in self._in_flight,
                    "metrics": snapshot.jobs[job.id].as_dict() if job.id in snapshot.jobs else None,
                }
                for job in jobs
            ],
        }


__all__ = ["JobScheduler", "build_trigger", "resolve_task"]
