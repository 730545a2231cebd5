"""Temporary region access grant lifecycle."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock, as_utc, get_system_clock
from regionaccess_api.models.region_access import PermanentRegionAssignment
from regionaccess_api.models.region_grant import RegionAccessGrant
from regionaccess_api.observability.grants import get_grant_store

from .audit import AuditEmitter, GrantAuditAction, GrantAuditEvent, LogAuditEmitter, emit_best_effort
from .errors import (
    GrantAlreadyTerminalError,
    GrantConflictError,
    GrantNotFoundError,
    GrantValidationError,
)
from .locks import PairLockRegistry, get_pair_lock_registry
from .projection import EffectiveAccessProjection, temporary_justification
from .status import GrantStatus, GrantView, grant_status
from .storage import run_read, unit_of_work


@dataclass(slots=True)
class GrantFilter:
    """Optional criteria for :meth:`GrantLifecycleService.query_all`."""

    subject_user_id: UUID | None = None
    region: str | None = None
    status: GrantStatus | None = None
    granted_by_user_id: UUID | None = None


@dataclass(slots=True)
class GrantSummary:
    """Counts of grants by derived status, region and subject."""

    total: int = 0
    active: int = 0
    expired: int = 0
    revoked: int = 0
    by_region: Dict[str, int] = field(default_factory=dict)
    by_subject: Dict[str, int] = field(default_factory=dict)


def _require_text(value: str | None, field_name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise GrantValidationError(f"{field_name} must not be empty")
    return cleaned


class GrantLifecycleService:
    """Create, extend, revoke and query temporary region access grants.

    Every mutation runs under the ``(subject, region)`` pair lock and commits
    the grant row together with its projection row. Audit events go out only
    after the commit and never affect the outcome.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock | None = None,
        audit_emitter: AuditEmitter | None = None,
        locks: PairLockRegistry | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or get_system_clock()
        self._audit = audit_emitter or LogAuditEmitter()
        self._locks = locks or get_pair_lock_registry()
        self._projection = EffectiveAccessProjection(session)
        self._observability = get_grant_store()

    async def create_grant(
        self,
        *,
        subject_user_id: UUID,
        region: str,
        access_level: str,
        expires_at: datetime,
        reason: str,
        granted_by_user_id: UUID,
    ) -> GrantView:
        region = _require_text(region, "region")
        access_level = _require_text(access_level, "access_level")
        reason = _require_text(reason, "reason")
        expires_at = as_utc(expires_at)

        async with self._locks.hold(subject_user_id, region):
            now = self._clock.now()
            if expires_at <= now:
                raise GrantValidationError("expires_at must be in the future")

            try:
                async with unit_of_work(self._session, operation="create_grant"):
                    if await self._has_permanent_assignment(subject_user_id, region):
                        raise GrantConflictError(
                            f"User {subject_user_id} already has permanent access to region {region!r}; "
                            "remove the permanent assignment before granting temporary access",
                            code="permanent_assignment_exists",
                        )
                    existing = await find_active_grant(self._session, subject_user_id, region, now)
                    if existing is not None:
                        raise GrantConflictError(
                            f"User {subject_user_id} already has an active temporary grant {existing.id} "
                            f"for region {region!r}; extend or revoke it instead",
                            code="active_grant_exists",
                        )

                    grant = RegionAccessGrant(
                        subject_user_id=subject_user_id,
                        region=region,
                        access_level=access_level,
                        granted_by_user_id=granted_by_user_id,
                        granted_at=now,
                        expires_at=expires_at,
                        reason=reason,
                    )
                    self._session.add(grant)
                    await self._session.flush()
                    await self._projection.attach(
                        subject_user_id,
                        region,
                        access_level=access_level,
                        justification=temporary_justification(grant.id),
                        now=now,
                    )
            except GrantConflictError as exc:
                self._observability.record_conflict(exc.code)
                raise

        self._observability.record_action(GrantAuditAction.GRANT.value)
        logger.info(
            "Region access granted",
            grant_id=str(grant.id),
            subject_user_id=str(subject_user_id),
            region=region,
            expires_at=expires_at.isoformat(),
        )
        await emit_best_effort(
            self._audit,
            GrantAuditEvent(
                action=GrantAuditAction.GRANT,
                grant_id=grant.id,
                subject_user_id=subject_user_id,
                region=region,
                actor_user_id=granted_by_user_id,
                timestamp=now,
                reason=reason,
                expires_at=expires_at,
                metadata={"access_level": access_level},
            ),
        )
        return GrantView.from_grant(grant, now)

    async def extend_grant(
        self,
        grant_id: UUID,
        *,
        new_expires_at: datetime,
        actor_user_id: UUID,
    ) -> GrantView:
        """Move ``expires_at`` of an active grant. Shortening is allowed."""

        new_expires_at = as_utc(new_expires_at)
        grant = await self._get_grant(grant_id)

        async with self._locks.hold(grant.subject_user_id, grant.region):
            async with unit_of_work(self._session, operation="extend_grant"):
                await self._session.refresh(grant)
                now = self._clock.now()
                status = grant_status(grant, now)
                if status.is_terminal:
                    raise GrantAlreadyTerminalError(grant.id, status)
                if new_expires_at <= now:
                    raise GrantValidationError(
                        "new expires_at must be in the future; revoke the grant to end it now"
                    )
                previous_expires_at = as_utc(grant.expires_at)
                grant.expires_at = new_expires_at

        self._observability.record_action(GrantAuditAction.EXTEND.value)
        logger.info(
            "Region access grant expiry changed",
            grant_id=str(grant.id),
            previous_expires_at=previous_expires_at.isoformat(),
            expires_at=new_expires_at.isoformat(),
        )
        await emit_best_effort(
            self._audit,
            GrantAuditEvent(
                action=GrantAuditAction.EXTEND,
                grant_id=grant.id,
                subject_user_id=grant.subject_user_id,
                region=grant.region,
                actor_user_id=actor_user_id,
                timestamp=now,
                expires_at=new_expires_at,
                previous_expires_at=previous_expires_at,
            ),
        )
        return GrantView.from_grant(grant, now)

    async def revoke_grant(
        self,
        grant_id: UUID,
        *,
        actor_user_id: UUID,
        reason: str | None = None,
    ) -> GrantView:
        """End an active grant now. Terminal grants are reported, not touched."""

        reason = (reason or "").strip() or None
        grant = await self._get_grant(grant_id)

        async with self._locks.hold(grant.subject_user_id, grant.region):
            async with unit_of_work(self._session, operation="revoke_grant"):
                await self._session.refresh(grant)
                now = self._clock.now()
                status = grant_status(grant, now)
                if status.is_terminal:
                    raise GrantAlreadyTerminalError(grant.id, status)
                grant.revoked_at = now
                grant.revoked_by_user_id = actor_user_id
                grant.revoked_reason = reason
                await self._session.flush()
                await self._projection.release(
                    grant.subject_user_id,
                    grant.region,
                    justification=temporary_justification(grant.id),
                    now=now,
                )

        self._observability.record_action(GrantAuditAction.REVOKE.value)
        logger.info(
            "Region access grant revoked",
            grant_id=str(grant.id),
            subject_user_id=str(grant.subject_user_id),
            region=grant.region,
        )
        await emit_best_effort(
            self._audit,
            GrantAuditEvent(
                action=GrantAuditAction.REVOKE,
                grant_id=grant.id,
                subject_user_id=grant.subject_user_id,
                region=grant.region,
                actor_user_id=actor_user_id,
                timestamp=now,
                reason=reason,
            ),
        )
        return GrantView.from_grant(grant, now)

    async def get_grant(self, grant_id: UUID) -> GrantView:
        grant = await self._get_grant(grant_id)
        return GrantView.from_grant(grant, self._clock.now())

    async def query_active_for_user(self, subject_user_id: UUID) -> list[GrantView]:
        return await self._query_active(RegionAccessGrant.subject_user_id == subject_user_id)

    async def query_active_for_region(self, region: str) -> list[GrantView]:
        return await self._query_active(RegionAccessGrant.region == region)

    async def query_all(self, grant_filter: GrantFilter | None = None) -> list[GrantView]:
        """All grants matching ``grant_filter``, newest first.

        The status criterion is evaluated against the derived status.
        """

        grant_filter = grant_filter or GrantFilter()
        stmt = select(RegionAccessGrant).order_by(RegionAccessGrant.granted_at.desc())
        if grant_filter.subject_user_id is not None:
            stmt = stmt.where(RegionAccessGrant.subject_user_id == grant_filter.subject_user_id)
        if grant_filter.region:
            stmt = stmt.where(RegionAccessGrant.region == grant_filter.region)
        if grant_filter.granted_by_user_id is not None:
            stmt = stmt.where(RegionAccessGrant.granted_by_user_id == grant_filter.granted_by_user_id)

        result = await run_read(self._session, stmt, operation="query_all")
        now = self._clock.now()
        views = [GrantView.from_grant(grant, now) for grant in result.scalars()]
        if grant_filter.status is not None:
            views = [view for view in views if view.status is grant_filter.status]
        return views

    async def expiring_soon(self, window_seconds: int) -> list[GrantView]:
        """Active grants with at most ``window_seconds`` left, soonest first."""

        if window_seconds < 0:
            raise GrantValidationError("window_seconds must not be negative")
        views = await self._query_active(None)
        return [view for view in views if view.seconds_remaining <= window_seconds]

    async def summarize(self, grant_filter: GrantFilter | None = None) -> GrantSummary:
        views = await self.query_all(grant_filter)
        statuses = Counter(view.status for view in views)
        return GrantSummary(
            total=len(views),
            active=statuses.get(GrantStatus.ACTIVE, 0),
            expired=statuses.get(GrantStatus.EXPIRED, 0),
            revoked=statuses.get(GrantStatus.REVOKED, 0),
            by_region=dict(Counter(view.region for view in views)),
            by_subject=dict(Counter(str(view.subject_user_id) for view in views)),
        )

    async def _query_active(self, criterion) -> list[GrantView]:
        now = self._clock.now()
        stmt = (
            select(RegionAccessGrant)
            .where(RegionAccessGrant.revoked_at.is_(None), RegionAccessGrant.expires_at > now)
            .order_by(RegionAccessGrant.expires_at.asc())
        )
        if criterion is not None:
            stmt = stmt.where(criterion)
        result = await run_read(self._session, stmt, operation="query_active")
        views = [GrantView.from_grant(grant, now) for grant in result.scalars()]
        return [view for view in views if view.status is GrantStatus.ACTIVE]

    async def _get_grant(self, grant_id: UUID) -> RegionAccessGrant:
        stmt = select(RegionAccessGrant).where(RegionAccessGrant.id == grant_id)
        result = await run_read(self._session, stmt, operation="get_grant")
        grant = result.scalar_one_or_none()
        if grant is None:
            raise GrantNotFoundError(f"Grant {grant_id} not found")
        return grant

    async def _has_permanent_assignment(self, subject_user_id: UUID, region: str) -> bool:
        stmt = select(PermanentRegionAssignment.id).where(
            PermanentRegionAssignment.user_id == subject_user_id,
            PermanentRegionAssignment.region == region,
        )
        result = await self._session.execute(stmt)
        return result.first() is not None


async def find_active_grant(
    session: AsyncSession,
    subject_user_id: UUID,
    region: str,
    now: datetime,
) -> RegionAccessGrant | None:
    """Module-level lookup shared with the permanent-assignment path."""

    stmt = select(RegionAccessGrant).where(
        RegionAccessGrant.subject_user_id == subject_user_id,
        RegionAccessGrant.region == region,
        RegionAccessGrant.revoked_at.is_(None),
        RegionAccessGrant.expires_at > now,
    )
    for grant in (await session.execute(stmt)).scalars():
        if grant_status(grant, now) is GrantStatus.ACTIVE:
            return grant
    return None


__all__ = ["GrantFilter", "GrantLifecycleService", "GrantSummary", "find_active_grant"]
