"""Maintenance of the effective-access projection.

Both writers of ``effective_region_access`` (temporary grants and permanent
assignments) go through :class:`EffectiveAccessProjection` so they agree on the
``permanent`` / ``temporary:<grant id>`` tagging discipline. A row is only
removed once the justification being released is the last valid one for its
``(user, region)`` pair; otherwise it is re-tagged to the survivor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import as_utc
from regionaccess_api.models.region_access import EffectiveRegionAccess, PermanentRegionAssignment
from regionaccess_api.models.region_grant import RegionAccessGrant

from .errors import GrantConflictError
from .status import GrantStatus, grant_status

PERMANENT_JUSTIFICATION = "permanent"
_TEMPORARY_PREFIX = "temporary:"


def temporary_justification(grant_id: UUID) -> str:
    return f"{_TEMPORARY_PREFIX}{grant_id}"


def parse_temporary_justification(justification: str) -> UUID | None:
    """Return the grant id behind a ``temporary:<id>`` tag, else ``None``."""

    if not justification.startswith(_TEMPORARY_PREFIX):
        return None
    try:
        return UUID(justification[len(_TEMPORARY_PREFIX):])
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class EffectiveAccessEntry:
    """Consumer-facing projection row."""

    user_id: UUID
    region: str
    access_level: str
    justification: str

    @property
    def is_permanent(self) -> bool:
        return self.justification == PERMANENT_JUSTIFICATION

    @classmethod
    def from_row(cls, row: EffectiveRegionAccess) -> "EffectiveAccessEntry":
        return cls(
            user_id=row.user_id,
            region=row.region,
            access_level=row.access_level,
            justification=row.justification,
        )


@dataclass(frozen=True, slots=True)
class _Justification:
    tag: str
    access_level: str


class EffectiveAccessProjection:
    """Reads and writes projection rows within the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: UUID, region: str) -> EffectiveRegionAccess | None:
        stmt = select(EffectiveRegionAccess).where(
            EffectiveRegionAccess.user_id == user_id,
            EffectiveRegionAccess.region == region,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def attach(
        self,
        user_id: UUID,
        region: str,
        *,
        access_level: str,
        justification: str,
        now: datetime,
    ) -> EffectiveRegionAccess:
        """Upsert the pair's row for a newly valid justification.

        A ``permanent`` row is never downgraded to a temporary tag.
        """

        row = await self.get(user_id, region)
        if row is None:
            row = EffectiveRegionAccess(
                user_id=user_id,
                region=region,
                access_level=access_level,
                justification=justification,
                updated_at=now,
            )
            self._session.add(row)
            try:
                await self._session.flush()
            except IntegrityError as exc:
                # another writer inserted the pair between our read and flush
                raise GrantConflictError(
                    f"Region {region!r} access for user {user_id} changed concurrently",
                    code="active_grant_exists",
                ) from exc
            return row

        if row.justification == PERMANENT_JUSTIFICATION and justification != PERMANENT_JUSTIFICATION:
            logger.warning(
                "Temporary justification ignored for permanently assigned pair",
                user_id=str(user_id),
                region=region,
                justification=justification,
            )
            return row

        row.justification = justification
        row.access_level = access_level
        row.updated_at = now
        await self._session.flush()
        return row

    async def release(
        self,
        user_id: UUID,
        region: str,
        *,
        justification: str,
        now: datetime,
    ) -> EffectiveRegionAccess | None:
        """Drop ``justification`` for the pair and return the surviving row, if any."""

        row = await self.get(user_id, region)
        if row is None:
            return None

        if row.justification != justification:
            # the pair is held by some other justification; leave it alone
            return row

        survivor = await self._resolve_justification(user_id, region, now=now, exclude=justification)
        if survivor is None:
            await self._session.delete(row)
            await self._session.flush()
            logger.info(
                "Effective region access removed",
                user_id=str(user_id),
                region=region,
                released=justification,
            )
            return None

        row.justification = survivor.tag
        row.access_level = survivor.access_level
        row.updated_at = now
        await self._session.flush()
        logger.info(
            "Effective region access re-justified",
            user_id=str(user_id),
            region=region,
            released=justification,
            justification=survivor.tag,
        )
        return row

    async def is_permitted(self, user_id: UUID, region: str, *, now: datetime) -> EffectiveAccessEntry | None:
        """Use-time access check. Never trusts a temporary row without checking its grant."""

        row = await self.get(user_id, region)
        if row is None:
            return None
        if await self._is_row_valid(row, now=now):
            return EffectiveAccessEntry.from_row(row)
        return None

    async def current_entries(self, user_id: UUID, *, now: datetime) -> list[EffectiveAccessEntry]:
        """Rows for ``user_id`` that are valid at ``now``, ordered by region."""

        stmt = (
            select(EffectiveRegionAccess)
            .where(EffectiveRegionAccess.user_id == user_id)
            .order_by(EffectiveRegionAccess.region.asc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        grants = await self._load_grants(rows)
        entries: list[EffectiveAccessEntry] = []
        for row in rows:
            if self._row_valid_with(row, grants, now=now):
                entries.append(EffectiveAccessEntry.from_row(row))
        return entries

    async def rebuild(self, *, now: datetime) -> int:
        """Recreate every row from permanent assignments plus active grants."""

        await self._session.execute(delete(EffectiveRegionAccess))

        desired: dict[tuple[UUID, str], _Justification] = {}
        assignments = (await self._session.execute(select(PermanentRegionAssignment))).scalars().all()
        for assignment in assignments:
            desired[(assignment.user_id, assignment.region)] = _Justification(
                tag=PERMANENT_JUSTIFICATION,
                access_level=assignment.access_level,
            )

        grants = (
            await self._session.execute(
                select(RegionAccessGrant)
                .where(RegionAccessGrant.revoked_at.is_(None), RegionAccessGrant.expires_at > now)
                .order_by(RegionAccessGrant.expires_at.desc())
            )
        ).scalars().all()
        for grant in grants:
            if grant_status(grant, now) is not GrantStatus.ACTIVE:
                continue
            desired.setdefault(
                (grant.subject_user_id, grant.region),
                _Justification(tag=temporary_justification(grant.id), access_level=grant.access_level),
            )

        for (user_id, region), justification in desired.items():
            self._session.add(
                EffectiveRegionAccess(
                    user_id=user_id,
                    region=region,
                    access_level=justification.access_level,
                    justification=justification.tag,
                    updated_at=now,
                )
            )
        await self._session.flush()
        logger.info("Effective region access rebuilt", rows=len(desired))
        return len(desired)

    async def _resolve_justification(
        self,
        user_id: UUID,
        region: str,
        *,
        now: datetime,
        exclude: str,
    ) -> _Justification | None:
        if exclude != PERMANENT_JUSTIFICATION:
            assignment = (
                await self._session.execute(
                    select(PermanentRegionAssignment).where(
                        PermanentRegionAssignment.user_id == user_id,
                        PermanentRegionAssignment.region == region,
                    )
                )
            ).scalar_one_or_none()
            if assignment is not None:
                return _Justification(tag=PERMANENT_JUSTIFICATION, access_level=assignment.access_level)

        excluded_grant = parse_temporary_justification(exclude)
        stmt = (
            select(RegionAccessGrant)
            .where(
                RegionAccessGrant.subject_user_id == user_id,
                RegionAccessGrant.region == region,
                RegionAccessGrant.revoked_at.is_(None),
                RegionAccessGrant.expires_at > now,
            )
            .order_by(RegionAccessGrant.expires_at.desc())
        )
        if excluded_grant is not None:
            stmt = stmt.where(RegionAccessGrant.id != excluded_grant)
        for grant in (await self._session.execute(stmt)).scalars():
            if grant_status(grant, now) is GrantStatus.ACTIVE:
                return _Justification(tag=temporary_justification(grant.id), access_level=grant.access_level)
        return None

    async def _is_row_valid(self, row: EffectiveRegionAccess, *, now: datetime) -> bool:
        grants = await self._load_grants([row])
        return self._row_valid_with(row, grants, now=now)

    async def _load_grants(self, rows: Sequence[EffectiveRegionAccess]) -> dict[UUID, RegionAccessGrant]:
        grant_ids = {
            grant_id
            for grant_id in (parse_temporary_justification(row.justification) for row in rows)
            if grant_id is not None
        }
        if not grant_ids:
            return {}
        stmt = select(RegionAccessGrant).where(RegionAccessGrant.id.in_(grant_ids))
        return {grant.id: grant for grant in (await self._session.execute(stmt)).scalars()}

    @staticmethod
    def _row_valid_with(
        row: EffectiveRegionAccess,
        grants: dict[UUID, RegionAccessGrant],
        *,
        now: datetime,
    ) -> bool:
        if row.justification == PERMANENT_JUSTIFICATION:
            return True
        grant_id = parse_temporary_justification(row.justification)
        if grant_id is None:
            return False
        grant = grants.get(grant_id)
        if grant is None or grant.subject_user_id != row.user_id or grant.region != row.region:
            return False
        return grant_status(grant, as_utc(now)) is GrantStatus.ACTIVE


__all__ = [
    "EffectiveAccessEntry",
    "EffectiveAccessProjection",
    "PERMANENT_JUSTIFICATION",
    "parse_temporary_justification",
    "temporary_justification",
]
