"""Permanent region assignment path.

Permanent and temporary access are mutually exclusive routes into the same
projection table, so assigning permanently is rejected while a temporary grant
for the pair is active.
"""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock, get_system_clock
from regionaccess_api.models.region_access import PermanentRegionAssignment
from regionaccess_api.observability.grants import get_grant_store

from .errors import GrantConflictError, GrantNotFoundError, GrantValidationError
from .lifecycle import find_active_grant
from .locks import PairLockRegistry, get_pair_lock_registry
from .projection import PERMANENT_JUSTIFICATION, EffectiveAccessProjection
from .storage import run_read, unit_of_work


class PermanentAssignmentService:
    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock | None = None,
        locks: PairLockRegistry | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or get_system_clock()
        self._locks = locks or get_pair_lock_registry()
        self._projection = EffectiveAccessProjection(session)
        self._observability = get_grant_store()

    async def assign(
        self,
        *,
        user_id: UUID,
        region: str,
        access_level: str,
        assigned_by_user_id: UUID,
    ) -> PermanentRegionAssignment:
        region = (region or "").strip()
        access_level = (access_level or "").strip()
        if not region or not access_level:
            raise GrantValidationError("region and access_level must not be empty")

        async with self._locks.hold(user_id, region):
            now = self._clock.now()
            try:
                async with unit_of_work(self._session, operation="assign_permanent"):
                    if await self._get(user_id, region) is not None:
                        raise GrantConflictError(
                            f"User {user_id} is already permanently assigned to region {region!r}",
                            code="permanent_assignment_duplicate",
                        )
                    active = await find_active_grant(self._session, user_id, region, now)
                    if active is not None:
                        raise GrantConflictError(
                            f"User {user_id} holds active temporary grant {active.id} for region {region!r}; "
                            "revoke it before assigning the region permanently",
                            code="active_grant_exists",
                        )
                    assignment = PermanentRegionAssignment(
                        user_id=user_id,
                        region=region,
                        access_level=access_level,
                        assigned_by_user_id=assigned_by_user_id,
                        assigned_at=now,
                    )
                    self._session.add(assignment)
                    await self._session.flush()
                    await self._projection.attach(
                        user_id,
                        region,
                        access_level=access_level,
                        justification=PERMANENT_JUSTIFICATION,
                        now=now,
                    )
            except GrantConflictError as exc:
                self._observability.record_conflict(exc.code)
                raise

        logger.info("Permanent region access assigned", user_id=str(user_id), region=region)
        return assignment

    async def unassign(self, *, user_id: UUID, region: str, actor_user_id: UUID) -> None:
        async with self._locks.hold(user_id, region):
            now = self._clock.now()
            async with unit_of_work(self._session, operation="unassign_permanent"):
                assignment = await self._get(user_id, region)
                if assignment is None:
                    raise GrantNotFoundError(f"User {user_id} has no permanent assignment for region {region!r}")
                await self._session.delete(assignment)
                await self._session.flush()
                await self._projection.release(
                    user_id,
                    region,
                    justification=PERMANENT_JUSTIFICATION,
                    now=now,
                )

        logger.info(
            "Permanent region access removed",
            user_id=str(user_id),
            region=region,
            actor_user_id=str(actor_user_id),
        )

    async def list_for_user(self, user_id: UUID) -> list[PermanentRegionAssignment]:
        stmt = (
            select(PermanentRegionAssignment)
            .where(PermanentRegionAssignment.user_id == user_id)
            .order_by(PermanentRegionAssignment.region.asc())
        )
        result = await run_read(self._session, stmt, operation="list_permanent")
        return list(result.scalars())

    async def _get(self, user_id: UUID, region: str) -> PermanentRegionAssignment | None:
        stmt = select(PermanentRegionAssignment).where(
            PermanentRegionAssignment.user_id == user_id,
            PermanentRegionAssignment.region == region,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()


__all__ = ["PermanentAssignmentService"]
