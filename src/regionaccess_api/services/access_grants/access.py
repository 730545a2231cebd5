"""Read side of the effective-access projection for downstream consumers."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock, get_system_clock

from .errors import GrantStorageError
from .locks import PairLockRegistry, get_pair_lock_registry
from .projection import EffectiveAccessEntry, EffectiveAccessProjection
from .storage import unit_of_work


class RegionAccessService:
    """Answers "may this user touch this region now" from the projection.

    Temporary rows are re-verified against their grant on every read, so a
    sweep that has not run yet never widens access.
    """

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

    async def current_regions(self, user_id: UUID) -> list[EffectiveAccessEntry]:
        try:
            return await self._projection.current_entries(user_id, now=self._clock.now())
        except SQLAlchemyError as exc:
            logger.exception("Region grant storage failure", operation="current_regions", error=str(exc))
            raise GrantStorageError("Storage failure during current_regions") from exc

    async def check(self, user_id: UUID, region: str) -> EffectiveAccessEntry | None:
        try:
            return await self._projection.is_permitted(user_id, region, now=self._clock.now())
        except SQLAlchemyError as exc:
            logger.exception("Region grant storage failure", operation="check_access", error=str(exc))
            raise GrantStorageError("Storage failure during check_access") from exc

    async def rebuild(self) -> int:
        """Recreate the projection while every pair is locked.

        Grant and assignment mutations in this process wait for it to finish.
        Other processes sharing the database are not covered; run it there
        only while they are drained.
        """

        async with self._locks.exclusive(), unit_of_work(self._session, operation="rebuild_projection"):
            return await self._projection.rebuild(now=self._clock.now())


__all__ = ["RegionAccessService"]
