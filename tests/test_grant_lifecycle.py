import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from conftest import RecordingAuditEmitter
from regionaccess_api.models.region_grant import RegionAccessGrant
from regionaccess_api.observability.grants import get_grant_store
from regionaccess_api.services.access_grants import (
    EffectiveAccessProjection,
    GrantAlreadyTerminalError,
    GrantConflictError,
    GrantFilter,
    GrantLifecycleService,
    GrantNotFoundError,
    GrantStatus,
    GrantValidationError,
    PermanentAssignmentService,
)


def _service(session, clock, audit, locks) -> GrantLifecycleService:
    return GrantLifecycleService(session, clock=clock, audit_emitter=audit, locks=locks)


async def _grant(service, clock, *, subject=None, region="north-basin", seconds=3600, grantor=None):
    return await service.create_grant(
        subject_user_id=subject or uuid4(),
        region=region,
        access_level="write",
        expires_at=clock.now() + timedelta(seconds=seconds),
        reason="levee inspection",
        granted_by_user_id=grantor or uuid4(),
    )


@pytest.mark.asyncio
async def test_create_grant_writes_grant_and_projection(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, subject=subject)

        assert view.status is GrantStatus.ACTIVE
        assert view.seconds_remaining == 3600
        assert view.region == "north-basin"

        row = await EffectiveAccessProjection(session).get(subject, "north-basin")
        assert row is not None
        assert row.justification == f"temporary:{view.id}"
        assert row.access_level == "write"

    assert audit.actions() == ["grant"]
    assert audit.events[0].actor_user_id == view.granted_by_user_id
    assert get_grant_store().snapshot().actions["grant"] == 1


@pytest.mark.asyncio
async def test_create_rejects_expiry_not_in_future(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        with pytest.raises(GrantValidationError):
            await _grant(service, clock, seconds=0)
        with pytest.raises(GrantValidationError):
            await _grant(service, clock, seconds=-30)

        count = (await session.execute(select(RegionAccessGrant))).scalars().all()
        assert count == []
    assert audit.events == []


@pytest.mark.asyncio
async def test_create_rejects_blank_reason(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        with pytest.raises(GrantValidationError):
            await service.create_grant(
                subject_user_id=uuid4(),
                region="north-basin",
                access_level="read",
                expires_at=clock.now() + timedelta(hours=1),
                reason="   ",
                granted_by_user_id=uuid4(),
            )


@pytest.mark.asyncio
async def test_create_conflicts_with_permanent_assignment(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        await PermanentAssignmentService(session, clock=clock, locks=locks).assign(
            user_id=subject,
            region="north-basin",
            access_level="read",
            assigned_by_user_id=uuid4(),
        )

        service = _service(session, clock, audit, locks)
        with pytest.raises(GrantConflictError) as excinfo:
            await _grant(service, clock, subject=subject)

        assert excinfo.value.code == "permanent_assignment_exists"
        grants = (await session.execute(select(RegionAccessGrant))).scalars().all()
        assert grants == []
        row = await EffectiveAccessProjection(session).get(subject, "north-basin")
        assert row.justification == "permanent"

    assert get_grant_store().snapshot().conflicts == {"permanent_assignment_exists": 1}


@pytest.mark.asyncio
async def test_second_active_grant_for_pair_conflicts(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        first = await _grant(service, clock, subject=subject)

        with pytest.raises(GrantConflictError) as excinfo:
            await _grant(service, clock, subject=subject, seconds=7200)

        assert excinfo.value.code == "active_grant_exists"
        assert str(first.id) in excinfo.value.message
        # other regions are independent
        other = await _grant(service, clock, subject=subject, region="south-delta")
        assert other.status is GrantStatus.ACTIVE


@pytest.mark.asyncio
async def test_new_grant_allowed_once_previous_has_expired(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        first = await _grant(service, clock, subject=subject, seconds=60)
        clock.advance(seconds=61)

        second = await _grant(service, clock, subject=subject)

        assert second.id != first.id
        row = await EffectiveAccessProjection(session).get(subject, "north-basin")
        assert row.justification == f"temporary:{second.id}"


@pytest.mark.asyncio
async def test_concurrent_creates_for_same_pair_admit_exactly_one(session_factory, clock, audit, locks):
    subject = uuid4()

    async def attempt():
        async with session_factory() as session:
            return await _grant(_service(session, clock, audit, locks), clock, subject=subject)

    results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

    successes = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], GrantConflictError)
    assert failures[0].code == "active_grant_exists"

    async with session_factory() as session:
        grants = (await session.execute(select(RegionAccessGrant))).scalars().all()
        assert len(grants) == 1
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_extend_moves_expiry_and_reports_previous(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, seconds=600)
        new_expiry = clock.now() + timedelta(hours=4)

        extended = await service.extend_grant(view.id, new_expires_at=new_expiry, actor_user_id=uuid4())

        assert extended.expires_at == new_expiry
        assert extended.seconds_remaining == 4 * 3600
        assert extended.status is GrantStatus.ACTIVE

    event = audit.events[-1]
    assert event.action.value == "extend"
    assert event.previous_expires_at == view.expires_at
    assert event.expires_at == new_expiry


@pytest.mark.asyncio
async def test_shortening_is_an_extension_to_an_earlier_time(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, seconds=3600)

        shortened = await service.extend_grant(
            view.id,
            new_expires_at=clock.now() + timedelta(seconds=60),
            actor_user_id=uuid4(),
        )
        assert shortened.seconds_remaining == 60

        clock.advance(seconds=61)
        assert (await service.get_grant(view.id)).status is GrantStatus.EXPIRED


@pytest.mark.asyncio
async def test_extend_rejects_new_expiry_in_the_past(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock)

        with pytest.raises(GrantValidationError):
            await service.extend_grant(view.id, new_expires_at=clock.now(), actor_user_id=uuid4())

        assert (await service.get_grant(view.id)).expires_at == view.expires_at


@pytest.mark.asyncio
async def test_extend_of_expired_grant_is_terminal(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, seconds=30)
        clock.advance(seconds=30)

        with pytest.raises(GrantAlreadyTerminalError) as excinfo:
            await service.extend_grant(
                view.id,
                new_expires_at=clock.now() + timedelta(hours=1),
                actor_user_id=uuid4(),
            )
        assert excinfo.value.status is GrantStatus.EXPIRED


@pytest.mark.asyncio
async def test_extend_then_revoke_after_original_expiry_passes(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, subject=subject, seconds=600)
        await service.extend_grant(
            view.id,
            new_expires_at=clock.now() + timedelta(hours=2),
            actor_user_id=uuid4(),
        )
        clock.advance(seconds=900)

        revoked = await service.revoke_grant(view.id, actor_user_id=uuid4(), reason="survey finished")

        assert revoked.status is GrantStatus.REVOKED
        assert revoked.revoked_reason == "survey finished"
        assert await EffectiveAccessProjection(session).get(subject, "north-basin") is None

    assert audit.actions() == ["grant", "extend", "revoke"]


@pytest.mark.asyncio
async def test_revoke_after_natural_expiry_reports_expired(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, seconds=60)
        clock.advance(minutes=5)

        with pytest.raises(GrantAlreadyTerminalError) as excinfo:
            await service.revoke_grant(view.id, actor_user_id=uuid4())

        assert excinfo.value.status is GrantStatus.EXPIRED
        stored = await service.get_grant(view.id)
        assert stored.revoked_at is None
        assert stored.status is GrantStatus.EXPIRED


@pytest.mark.asyncio
async def test_revoking_twice_reports_revoked(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock)
        await service.revoke_grant(view.id, actor_user_id=uuid4())

        with pytest.raises(GrantAlreadyTerminalError) as excinfo:
            await service.revoke_grant(view.id, actor_user_id=uuid4())
        assert excinfo.value.status is GrantStatus.REVOKED


@pytest.mark.asyncio
async def test_unknown_grant_raises_not_found(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        with pytest.raises(GrantNotFoundError):
            await service.get_grant(uuid4())
        with pytest.raises(GrantNotFoundError):
            await service.revoke_grant(uuid4(), actor_user_id=uuid4())
        with pytest.raises(GrantNotFoundError):
            await service.extend_grant(
                uuid4(),
                new_expires_at=clock.now() + timedelta(hours=1),
                actor_user_id=uuid4(),
            )


@pytest.mark.asyncio
async def test_hour_long_grant_counts_down_and_expires(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        view = await _grant(service, clock, subject=subject, seconds=3600)
        assert view.seconds_remaining == 3600

        clock.advance(seconds=3599)
        active = await service.query_active_for_user(subject)
        assert [grant.id for grant in active] == [view.id]
        assert active[0].seconds_remaining == 1
        assert active[0].time_remaining.display == "1s"

        clock.advance(seconds=1)
        assert await service.query_active_for_user(subject) == []
        expired = await service.get_grant(view.id)
        assert expired.status is GrantStatus.EXPIRED
        assert expired.seconds_remaining == 0


@pytest.mark.asyncio
async def test_query_all_filters_by_derived_status_and_grantor(session_factory, clock, audit, locks):
    grantor = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        short = await _grant(service, clock, region="east-ridge", seconds=60, grantor=grantor)
        revoked = await _grant(service, clock, region="west-coast", grantor=grantor)
        await service.revoke_grant(revoked.id, actor_user_id=grantor)
        clock.advance(seconds=1)
        active = await _grant(service, clock, region="north-basin")
        clock.advance(seconds=120)

        assert {view.id for view in await service.query_all()} == {short.id, revoked.id, active.id}
        by_status = await service.query_all(GrantFilter(status=GrantStatus.EXPIRED))
        assert [view.id for view in by_status] == [short.id]
        by_grantor = await service.query_all(GrantFilter(granted_by_user_id=grantor))
        assert {view.id for view in by_grantor} == {short.id, revoked.id}
        by_region = await service.query_all(GrantFilter(region="north-basin"))
        assert [view.id for view in by_region] == [active.id]
        # newest first
        assert (await service.query_all())[0].id == active.id
        assert [view.id for view in await service.query_active_for_region("north-basin")] == [active.id]


@pytest.mark.asyncio
async def test_expiring_soon_orders_by_expiry_and_skips_terminal(session_factory, clock, audit, locks):
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        later = await _grant(service, clock, region="r-later", seconds=500)
        sooner = await _grant(service, clock, region="r-sooner", seconds=120)
        revoked = await _grant(service, clock, region="r-revoked", seconds=60)
        await service.revoke_grant(revoked.id, actor_user_id=uuid4())
        gone = await _grant(service, clock, region="r-gone", seconds=30)
        await _grant(service, clock, region="r-far", seconds=5000)
        clock.advance(seconds=40)

        expiring = await service.expiring_soon(600)

        assert [view.id for view in expiring] == [sooner.id, later.id]
        assert gone.id not in {view.id for view in expiring}
        assert [view.id for view in await service.expiring_soon(0)] == []


@pytest.mark.asyncio
async def test_expiring_soon_rejects_negative_window(session_factory, clock, audit, locks):
    async with session_factory() as session:
        with pytest.raises(GrantValidationError):
            await _service(session, clock, audit, locks).expiring_soon(-1)


@pytest.mark.asyncio
async def test_summarize_counts_by_status_region_and_subject(session_factory, clock, audit, locks):
    subject = uuid4()
    async with session_factory() as session:
        service = _service(session, clock, audit, locks)
        await _grant(service, clock, subject=subject, region="north-basin", seconds=60)
        revoked = await _grant(service, clock, subject=subject, region="south-delta")
        await service.revoke_grant(revoked.id, actor_user_id=uuid4())
        await _grant(service, clock, region="north-basin", seconds=7200)
        clock.advance(seconds=90)

        summary = await service.summarize()

    assert summary.total == 3
    assert (summary.active, summary.expired, summary.revoked) == (1, 1, 1)
    assert summary.by_region == {"north-basin": 2, "south-delta": 1}
    assert summary.by_subject[str(subject)] == 2


@pytest.mark.asyncio
async def test_audit_failure_never_rolls_back_the_mutation(session_factory, clock, locks):
    failing = RecordingAuditEmitter(fail=True)
    async with session_factory() as session:
        service = _service(session, clock, failing, locks)
        view = await _grant(service, clock)
        revoked = await service.revoke_grant(view.id, actor_user_id=uuid4())
        assert revoked.status is GrantStatus.REVOKED

    async with session_factory() as session:
        stored = (await session.execute(select(RegionAccessGrant))).scalar_one()
        assert stored.revoked_at is not None

    assert get_grant_store().snapshot().audit == {"failed": 2}
