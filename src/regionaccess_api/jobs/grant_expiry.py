"""Scheduled sweep that reconciles elapsed region access grants."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock
from regionaccess_api.core.settings import settings
from regionaccess_api.services.access_grants import (
    AuditEmitter,
    GrantExpirationReconciler,
    build_audit_emitter,
)

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def reconcile_expired_grants(
    *,
    session_factory: SessionFactory,
    batch_size: int | None = None,
    clock: Clock | None = None,
    audit_emitter: AuditEmitter | None = None,
) -> Dict[str, Any]:
    """Expire every elapsed grant, up to ``batch_size`` per run."""

    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        reconciler = GrantExpirationReconciler(
            managed_session,
            clock=clock,
            audit_emitter=audit_emitter or build_audit_emitter(settings),
        )
        limit = settings.grant_expiry_batch_size if batch_size is None else batch_size
        result = await reconciler.sweep(limit=limit)

    summary = result.as_dict()
    if not result.expired and not result.skipped:
        logger.info("No region access grants due for expiry")
    return summary


__all__ = ["reconcile_expired_grants"]
