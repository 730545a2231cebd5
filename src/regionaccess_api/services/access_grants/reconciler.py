"""Expiration reconciler: folds elapsed grants into the expired state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock, as_utc, get_system_clock
from regionaccess_api.models.region_grant import RegionAccessGrant, RegionAccessGrantExpiry
from regionaccess_api.observability.grants import get_grant_store
from regionaccess_api.observability.tracing import grant_span

from .audit import AuditEmitter, GrantAuditAction, GrantAuditEvent, LogAuditEmitter, emit_best_effort
from .errors import GrantValidationError
from .locks import PairLockRegistry, get_pair_lock_registry
from .projection import EffectiveAccessProjection, temporary_justification
from .status import GrantStatus, grant_status
from .storage import run_read, unit_of_work

# Shared by the worker, the job scheduler and on-read triggers so that sweeps
# never overlap within a process.
_SWEEP_GUARD = asyncio.Lock()


@dataclass(slots=True)
class ExpirySweepSummary:
    expired: List[UUID] = field(default_factory=list)
    skipped: bool = False

    def as_dict(self) -> Dict[str, object]:
        return {
            "expired": len(self.expired),
            "grant_ids": [str(grant_id) for grant_id in self.expired],
            "skipped": self.skipped,
        }


class GrantExpirationReconciler:
    """Sweep grants whose ``expires_at`` has passed.

    For each elapsed, unrevoked, not yet reconciled grant: record the expiry
    marker, release its projection row unless something else still justifies
    the pair, commit, then emit that grant's ``expire`` audit event before
    moving on to the next candidate. Access checks never depend on this
    having run; they re-verify time themselves.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock | None = None,
        audit_emitter: AuditEmitter | None = None,
        locks: PairLockRegistry | None = None,
        guard: asyncio.Lock | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or get_system_clock()
        self._audit = audit_emitter or LogAuditEmitter()
        self._locks = locks or get_pair_lock_registry()
        self._guard = guard or _SWEEP_GUARD
        self._projection = EffectiveAccessProjection(session)
        self._observability = get_grant_store()

    async def sweep(self, *, limit: int | None = None) -> ExpirySweepSummary:
        if limit is not None and limit <= 0:
            raise GrantValidationError("Sweep limit must be positive")
        if self._guard.locked():
            logger.info("Grant expiry sweep already in progress; skipping")
            self._observability.record_sweep(expired=0, skipped=True)
            return ExpirySweepSummary(skipped=True)

        async with self._guard:
            with grant_span("region_grant.expiry_sweep", limit=limit) as span:
                candidates = await self._load_candidates(limit)
                expired: list[UUID] = []
                for grant in candidates:
                    event = await self._expire(grant)
                    if event is None:
                        continue
                    # marker is committed; emit before the next candidate can fail
                    await emit_best_effort(self._audit, event)
                    expired.append(event.grant_id)
                span.set_attribute("region_grant.expired", len(expired))

        summary = ExpirySweepSummary(expired=expired)
        self._observability.record_sweep(expired=len(summary.expired))
        if summary.expired:
            logger.bind(summary=summary.as_dict()).info("Grant expiry sweep completed")
        return summary

    async def _load_candidates(self, limit: int | None) -> list[RegionAccessGrant]:
        now = self._clock.now()
        stmt = (
            select(RegionAccessGrant)
            .outerjoin(RegionAccessGrantExpiry, RegionAccessGrantExpiry.grant_id == RegionAccessGrant.id)
            .where(
                RegionAccessGrant.revoked_at.is_(None),
                RegionAccessGrant.expires_at <= now,
                RegionAccessGrantExpiry.grant_id.is_(None),
            )
            .order_by(RegionAccessGrant.expires_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await run_read(self._session, stmt, operation="load_expired_grants")
        candidates = list(result.scalars())
        # release the read transaction before taking pair locks
        await self._session.commit()
        return candidates

    async def _expire(self, grant: RegionAccessGrant) -> GrantAuditEvent | None:
        async with self._locks.hold(grant.subject_user_id, grant.region):
            async with unit_of_work(self._session, operation="expire_grant"):
                await self._session.refresh(grant)
                now = self._clock.now()
                # an extend or revoke may have landed since the candidate query
                if grant_status(grant, now) is not GrantStatus.EXPIRED:
                    return None
                already = await self._session.get(RegionAccessGrantExpiry, grant.id)
                if already is not None:
                    return None
                self._session.add(RegionAccessGrantExpiry(grant_id=grant.id, reconciled_at=now))
                await self._projection.release(
                    grant.subject_user_id,
                    grant.region,
                    justification=temporary_justification(grant.id),
                    now=now,
                )

        logger.info(
            "Region access grant expired",
            grant_id=str(grant.id),
            subject_user_id=str(grant.subject_user_id),
            region=grant.region,
        )
        self._observability.record_action(GrantAuditAction.EXPIRE.value)
        return GrantAuditEvent(
            action=GrantAuditAction.EXPIRE,
            grant_id=grant.id,
            subject_user_id=grant.subject_user_id,
            region=grant.region,
            actor_user_id=None,
            timestamp=now,
            expires_at=as_utc(grant.expires_at),
        )


__all__ = ["ExpirySweepSummary", "GrantExpirationReconciler"]
