"""Worker wiring for periodic grant expiry sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock
from regionaccess_api.core.settings import settings
from regionaccess_api.services.access_grants import (
    AuditEmitter,
    GrantExpirationReconciler,
    build_audit_emitter,
)

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class GrantExpiryWorker:
    """Periodically folds elapsed grants into the expired state."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: float | None = None,
        batch_size: int | None = None,
        clock: Clock | None = None,
        audit_emitter: AuditEmitter | None = None,
    ) -> None:
        self._session_factory = session_factory
        if interval_seconds is None:
            interval_seconds = settings.grant_expiry_interval_seconds
        if batch_size is None:
            batch_size = settings.grant_expiry_batch_size
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._clock = clock
        self._audit_emitter = audit_emitter or build_audit_emitter(settings)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False
        self.last_run_at: datetime | None = None
        self.last_summary: Dict[str, object] | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Grant expiry worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Grant expiry worker stopped")

    async def run_once(self) -> Dict[str, object]:
        """Execute a single sweep and remember its summary."""

        session = await self._ensure_session()
        async with session as managed_session:
            reconciler = GrantExpirationReconciler(
                managed_session,
                clock=self._clock,
                audit_emitter=self._audit_emitter,
            )
            result = await reconciler.sweep(limit=self._batch_size)

        self.last_run_at = datetime.now(timezone.utc)
        self.last_summary = result.as_dict()
        return self.last_summary

    def health(self) -> Dict[str, object]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "batch_size": self._batch_size,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_summary": self.last_summary,
        }

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - retried on the next tick
                logger.exception("Grant expiry iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["GrantExpiryWorker"]
