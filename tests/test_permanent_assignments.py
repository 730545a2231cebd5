from datetime import timedelta
from uuid import uuid4

import pytest

from regionaccess_api.observability.grants import get_grant_store
from regionaccess_api.services.access_grants import (
    EffectiveAccessProjection,
    GrantConflictError,
    GrantExpirationReconciler,
    GrantLifecycleService,
    GrantNotFoundError,
    GrantValidationError,
    PermanentAssignmentService,
)


async def _assign(session, clock, locks, *, user_id, region="north-basin"):
    return await PermanentAssignmentService(session, clock=clock, locks=locks).assign(
        user_id=user_id,
        region=region,
        access_level="read",
        assigned_by_user_id=uuid4(),
    )


async def _grant(session, clock, audit, locks, *, subject, seconds=3600):
    service = GrantLifecycleService(session, clock=clock, audit_emitter=audit, locks=locks)
    return await service.create_grant(
        subject_user_id=subject,
        region="north-basin",
        access_level="write",
        expires_at=clock.now() + timedelta(seconds=seconds),
        reason="storm response",
        granted_by_user_id=uuid4(),
    )


@pytest.mark.asyncio
async def test_assign_writes_permanent_projection_row(session_factory, clock, locks):
    user_id = uuid4()
    async with session_factory() as session:
        assignment = await _assign(session, clock, locks, user_id=user_id)

        assert assignment.region == "north-basin"
        row = await EffectiveAccessProjection(session).get(user_id, "north-basin")
        assert row.justification == "permanent"
        assert row.access_level == "read"


@pytest.mark.asyncio
async def test_assign_rejected_while_temporary_grant_is_active(session_factory, clock, audit, locks):
    user_id = uuid4()
    async with session_factory() as session:
        view = await _grant(session, clock, audit, locks, subject=user_id)

        with pytest.raises(GrantConflictError) as excinfo:
            await _assign(session, clock, locks, user_id=user_id)

        assert excinfo.value.code == "active_grant_exists"
        row = await EffectiveAccessProjection(session).get(user_id, "north-basin")
        assert row.justification == f"temporary:{view.id}"
        assert await PermanentAssignmentService(session, clock=clock, locks=locks).list_for_user(user_id) == []

    assert get_grant_store().snapshot().conflicts == {"active_grant_exists": 1}


@pytest.mark.asyncio
async def test_duplicate_assignment_conflicts(session_factory, clock, locks):
    user_id = uuid4()
    async with session_factory() as session:
        await _assign(session, clock, locks, user_id=user_id)
        with pytest.raises(GrantConflictError) as excinfo:
            await _assign(session, clock, locks, user_id=user_id)
        assert excinfo.value.code == "permanent_assignment_duplicate"


@pytest.mark.asyncio
async def test_assign_requires_region(session_factory, clock, locks):
    async with session_factory() as session:
        with pytest.raises(GrantValidationError):
            await _assign(session, clock, locks, user_id=uuid4(), region=" ")


@pytest.mark.asyncio
async def test_assign_after_unswept_expiry_takes_over_the_row(session_factory, clock, audit, locks):
    user_id = uuid4()
    async with session_factory() as session:
        await _grant(session, clock, audit, locks, subject=user_id, seconds=60)
        clock.advance(minutes=2)

        await _assign(session, clock, locks, user_id=user_id)

        reconciler = GrantExpirationReconciler(session, clock=clock, audit_emitter=audit, locks=locks)
        summary = await reconciler.sweep()
        assert len(summary.expired) == 1

        row = await EffectiveAccessProjection(session).get(user_id, "north-basin")
        assert row is not None
        assert row.justification == "permanent"


@pytest.mark.asyncio
async def test_unassign_removes_projection_row(session_factory, clock, locks):
    user_id = uuid4()
    async with session_factory() as session:
        service = PermanentAssignmentService(session, clock=clock, locks=locks)
        await _assign(session, clock, locks, user_id=user_id)
        await _assign(session, clock, locks, user_id=user_id, region="south-delta")

        await service.unassign(user_id=user_id, region="north-basin", actor_user_id=uuid4())

        assert await EffectiveAccessProjection(session).get(user_id, "north-basin") is None
        remaining = await service.list_for_user(user_id)
        assert [item.region for item in remaining] == ["south-delta"]

        with pytest.raises(GrantNotFoundError):
            await service.unassign(user_id=user_id, region="north-basin", actor_user_id=uuid4())


@pytest.mark.asyncio
async def test_grant_possible_once_permanent_assignment_removed(session_factory, clock, audit, locks):
    user_id = uuid4()
    async with session_factory() as session:
        await _assign(session, clock, locks, user_id=user_id)
        await PermanentAssignmentService(session, clock=clock, locks=locks).unassign(
            user_id=user_id,
            region="north-basin",
            actor_user_id=uuid4(),
        )

        view = await _grant(session, clock, audit, locks, subject=user_id)

        row = await EffectiveAccessProjection(session).get(user_id, "north-basin")
        assert row.justification == f"temporary:{view.id}"
