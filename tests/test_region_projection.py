from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from regionaccess_api.models.region_access import EffectiveRegionAccess, PermanentRegionAssignment
from regionaccess_api.services.access_grants import (
    EffectiveAccessProjection,
    GrantConflictError,
    GrantLifecycleService,
    RegionAccessService,
)
from regionaccess_api.services.access_grants.projection import (
    parse_temporary_justification,
    temporary_justification,
)


async def _grant(session, clock, audit, locks, *, subject, region="north-basin", seconds=3600):
    service = GrantLifecycleService(session, clock=clock, audit_emitter=audit, locks=locks)
    return await service.create_grant(
        subject_user_id=subject,
        region=region,
        access_level="write",
        expires_at=clock.now() + timedelta(seconds=seconds),
        reason="sensor maintenance",
        granted_by_user_id=uuid4(),
    )


def test_justification_tags_round_trip() -> None:
    grant_id = uuid4()
    assert parse_temporary_justification(temporary_justification(grant_id)) == grant_id
    assert parse_temporary_justification("permanent") is None
    assert parse_temporary_justification("temporary:not-a-uuid") is None


@pytest.mark.asyncio
async def test_revoke_keeps_row_when_permanent_assignment_also_justifies_it(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        view = await _grant(session, clock, audit, locks, subject=subject)
        # assignment recorded out of band while the grant was live
        session.add(
            PermanentRegionAssignment(
                user_id=subject,
                region="north-basin",
                access_level="read",
                assigned_by_user_id=uuid4(),
                assigned_at=clock.now(),
            )
        )
        await session.commit()

        service = GrantLifecycleService(session, clock=clock, audit_emitter=audit, locks=locks)
        await service.revoke_grant(view.id, actor_user_id=uuid4())

        row = await EffectiveAccessProjection(session).get(subject, "north-basin")
        assert row is not None
        assert row.justification == "permanent"
        assert row.access_level == "read"


@pytest.mark.asyncio
async def test_release_ignores_rows_held_by_other_justifications(session_factory, clock):
    subject = uuid4()
    async with session_factory() as session:
        projection = EffectiveAccessProjection(session)
        await projection.attach(
            subject,
            "north-basin",
            access_level="read",
            justification="permanent",
            now=clock.now(),
        )
        # a temporary tag never downgrades a permanent row
        await projection.attach(
            subject,
            "north-basin",
            access_level="write",
            justification=temporary_justification(uuid4()),
            now=clock.now(),
        )
        row = await projection.release(
            subject,
            "north-basin",
            justification=temporary_justification(uuid4()),
            now=clock.now(),
        )
        await session.commit()

        assert row is not None
        assert row.justification == "permanent"
        assert row.access_level == "read"


@pytest.mark.asyncio
async def test_unique_pair_constraint_surfaces_as_conflict(session_factory, clock, monkeypatch):
    subject = uuid4()
    async with session_factory() as session:
        session.add(
            EffectiveRegionAccess(
                user_id=subject,
                region="north-basin",
                access_level="read",
                justification=temporary_justification(uuid4()),
                updated_at=clock.now(),
            )
        )
        await session.commit()

    async with session_factory() as session:
        projection = EffectiveAccessProjection(session)

        async def _stale_read(user_id, region):
            # another writer inserted the pair after this one looked
            return None

        monkeypatch.setattr(projection, "get", _stale_read)

        with pytest.raises(GrantConflictError) as excinfo:
            await projection.attach(
                subject,
                "north-basin",
                access_level="write",
                justification=temporary_justification(uuid4()),
                now=clock.now(),
            )
        assert excinfo.value.code == "active_grant_exists"
        await session.rollback()


@pytest.mark.asyncio
async def test_access_check_reverifies_time_before_any_sweep(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        await _grant(session, clock, audit, locks, subject=subject, seconds=60)
        access = RegionAccessService(session, clock=clock)

        entry = await access.check(subject, "north-basin")
        assert entry is not None
        assert entry.is_permanent is False

        clock.advance(seconds=60)
        # the row is still there until the reconciler runs, but it grants nothing
        assert await EffectiveAccessProjection(session).get(subject, "north-basin") is not None
        assert await access.check(subject, "north-basin") is None
        assert await access.current_regions(subject) == []


@pytest.mark.asyncio
async def test_current_regions_lists_permanent_and_live_temporary_access(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        await _grant(session, clock, audit, locks, subject=subject, region="south-delta")
        await _grant(session, clock, audit, locks, subject=subject, region="east-ridge", seconds=30)
        await EffectiveAccessProjection(session).attach(
            subject,
            "north-basin",
            access_level="read",
            justification="permanent",
            now=clock.now(),
        )
        await session.commit()
        clock.advance(seconds=45)

        entries = await RegionAccessService(session, clock=clock).current_regions(subject)

    assert [(entry.region, entry.is_permanent) for entry in entries] == [
        ("north-basin", True),
        ("south-delta", False),
    ]


@pytest.mark.asyncio
async def test_rebuild_restores_rows_from_assignments_and_active_grants(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        live = await _grant(session, clock, audit, locks, subject=subject, region="south-delta")
        await _grant(session, clock, audit, locks, subject=subject, region="east-ridge", seconds=30)
        session.add(
            PermanentRegionAssignment(
                user_id=subject,
                region="north-basin",
                access_level="admin",
                assigned_by_user_id=uuid4(),
                assigned_at=clock.now(),
            )
        )
        await session.commit()
        clock.advance(seconds=45)

        rows = await RegionAccessService(session, clock=clock).rebuild()

        assert rows == 2
        stored = (
            await session.execute(select(EffectiveRegionAccess).order_by(EffectiveRegionAccess.region))
        ).scalars().all()
        assert [(row.region, row.justification) for row in stored] == [
            ("north-basin", "permanent"),
            ("south-delta", f"temporary:{live.id}"),
        ]
