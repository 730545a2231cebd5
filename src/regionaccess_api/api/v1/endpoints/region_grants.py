from __future__ import annotations

from datetime import datetime
from typing import Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from regionaccess_api.api.dependencies.actors import require_actor, require_grantor
from regionaccess_api.api.dependencies.grants import get_lifecycle_service, get_reconciler, http_error
from regionaccess_api.core.settings import settings
from regionaccess_api.services.access_grants import (
    Actor,
    GrantError,
    GrantExpirationReconciler,
    GrantFilter,
    GrantLifecycleService,
    GrantStatus,
)

router = APIRouter(prefix="/region-grants", tags=["Region Grants"])


class GrantCreateRequest(BaseModel):
    subject_user_id: UUID
    region: str
    access_level: str | None = Field(default=None, description="Defaults to the configured access level")
    expires_at: datetime = Field(description="Absolute expiry; naive values are read as UTC")
    reason: str


class GrantExtendRequest(BaseModel):
    expires_at: datetime = Field(description="New absolute expiry; may be earlier than the current one")


class GrantRevokeRequest(BaseModel):
    reason: str | None = None


class TimeRemainingResponse(BaseModel):
    expired: bool
    display: str
    days: int
    hours: int
    minutes: int
    seconds: int
    total_seconds: int

    model_config = ConfigDict(from_attributes=True)


class GrantResponse(BaseModel):
    id: UUID
    subject_user_id: UUID
    region: str
    access_level: str
    granted_by_user_id: UUID
    granted_at: datetime
    expires_at: datetime
    reason: str
    revoked_at: datetime | None
    revoked_by_user_id: UUID | None
    revoked_reason: str | None
    status: GrantStatus
    seconds_remaining: int
    time_remaining: TimeRemainingResponse
    observed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GrantSummaryResponse(BaseModel):
    total: int
    active: int
    expired: int
    revoked: int
    by_region: Dict[str, int]
    by_subject: Dict[str, int]

    model_config = ConfigDict(from_attributes=True)


async def _reconcile_on_read(reconciler: GrantExpirationReconciler) -> None:
    if not settings.grant_reconcile_on_read:
        return
    try:
        await reconciler.sweep(limit=settings.grant_expiry_batch_size)
    except GrantError as error:
        raise http_error(error) from error


@router.post("", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    payload: GrantCreateRequest,
    actor: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
) -> GrantResponse:
    try:
        view = await service.create_grant(
            subject_user_id=payload.subject_user_id,
            region=payload.region,
            access_level=payload.access_level or settings.default_access_level,
            expires_at=payload.expires_at,
            reason=payload.reason,
            granted_by_user_id=actor.user_id,
        )
    except GrantError as error:
        raise http_error(error) from error
    return GrantResponse.model_validate(view)


@router.get("", response_model=list[GrantResponse])
async def list_grants(
    subject_user_id: UUID | None = Query(default=None),
    region: str | None = Query(default=None),
    status_filter: GrantStatus | None = Query(default=None, alias="status"),
    granted_by_user_id: UUID | None = Query(default=None),
    _: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
    reconciler: GrantExpirationReconciler = Depends(get_reconciler),
) -> list[GrantResponse]:
    await _reconcile_on_read(reconciler)
    grant_filter = GrantFilter(
        subject_user_id=subject_user_id,
        region=region,
        status=status_filter,
        granted_by_user_id=granted_by_user_id,
    )
    try:
        views = await service.query_all(grant_filter)
    except GrantError as error:
        raise http_error(error) from error
    return [GrantResponse.model_validate(view) for view in views]


@router.get("/mine", response_model=list[GrantResponse])
async def list_my_active_grants(
    actor: Actor = Depends(require_actor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
    reconciler: GrantExpirationReconciler = Depends(get_reconciler),
) -> list[GrantResponse]:
    await _reconcile_on_read(reconciler)
    try:
        views = await service.query_active_for_user(actor.user_id)
    except GrantError as error:
        raise http_error(error) from error
    return [GrantResponse.model_validate(view) for view in views]


@router.get("/expiring", response_model=list[GrantResponse])
async def list_expiring_grants(
    window_seconds: int | None = Query(default=None, description="Defaults to the configured warning window"),
    _: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
    reconciler: GrantExpirationReconciler = Depends(get_reconciler),
) -> list[GrantResponse]:
    await _reconcile_on_read(reconciler)
    window = settings.grant_expiring_soon_window_seconds if window_seconds is None else window_seconds
    try:
        views = await service.expiring_soon(window)
    except GrantError as error:
        raise http_error(error) from error
    return [GrantResponse.model_validate(view) for view in views]


@router.get("/summary", response_model=GrantSummaryResponse)
async def summarize_grants(
    subject_user_id: UUID | None = Query(default=None),
    region: str | None = Query(default=None),
    granted_by_user_id: UUID | None = Query(default=None),
    _: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
) -> GrantSummaryResponse:
    grant_filter = GrantFilter(
        subject_user_id=subject_user_id,
        region=region,
        granted_by_user_id=granted_by_user_id,
    )
    try:
        summary = await service.summarize(grant_filter)
    except GrantError as error:
        raise http_error(error) from error
    return GrantSummaryResponse.model_validate(summary)


@router.get("/{grant_id}", response_model=GrantResponse)
async def get_grant(
    grant_id: UUID,
    _: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
) -> GrantResponse:
    try:
        view = await service.get_grant(grant_id)
    except GrantError as error:
        raise http_error(error) from error
    return GrantResponse.model_validate(view)


@router.post("/{grant_id}/extend", response_model=GrantResponse)
async def extend_grant(
    grant_id: UUID,
    payload: GrantExtendRequest,
    actor: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
) -> GrantResponse:
    try:
        view = await service.extend_grant(grant_id, new_expires_at=payload.expires_at, actor_user_id=actor.user_id)
    except GrantError as error:
        raise http_error(error) from error
    return GrantResponse.model_validate(view)


@router.post("/{grant_id}/revoke", response_model=GrantResponse)
async def revoke_grant(
    grant_id: UUID,
    payload: GrantRevokeRequest | None = None,
    actor: Actor = Depends(require_grantor),
    service: GrantLifecycleService = Depends(get_lifecycle_service),
) -> GrantResponse:
    try:
        view = await service.revoke_grant(
            grant_id,
            actor_user_id=actor.user_id,
            reason=payload.reason if payload else None,
        )
    except GrantError as error:
        raise http_error(error) from error
    return GrantResponse.model_validate(view)
