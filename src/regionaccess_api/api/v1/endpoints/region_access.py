from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from regionaccess_api.api.dependencies.actors import get_authorizer, require_actor, require_grantor
from regionaccess_api.api.dependencies.grants import get_region_access_service, http_error
from regionaccess_api.services.access_grants import Actor, GrantError, RegionAccessService, RoleBasedAuthorizer

router = APIRouter(prefix="/region-access", tags=["Region Access"])


class EffectiveAccessResponse(BaseModel):
    user_id: UUID
    region: str
    access_level: str
    justification: str
    is_permanent: bool

    model_config = ConfigDict(from_attributes=True)


class AccessCheckResponse(BaseModel):
    user_id: UUID
    region: str
    permitted: bool
    access: EffectiveAccessResponse | None = None


class ProjectionRebuildResponse(BaseModel):
    rows: int


@router.get("/users/{user_id}/regions", response_model=list[EffectiveAccessResponse])
async def list_user_regions(
    user_id: UUID,
    _: Actor = Depends(require_grantor),
    service: RegionAccessService = Depends(get_region_access_service),
) -> list[EffectiveAccessResponse]:
    try:
        entries = await service.current_regions(user_id)
    except GrantError as error:
        raise http_error(error) from error
    return [EffectiveAccessResponse.model_validate(entry) for entry in entries]


@router.get("/me/regions", response_model=list[EffectiveAccessResponse])
async def list_my_regions(
    actor: Actor = Depends(require_actor),
    service: RegionAccessService = Depends(get_region_access_service),
) -> list[EffectiveAccessResponse]:
    try:
        entries = await service.current_regions(actor.user_id)
    except GrantError as error:
        raise http_error(error) from error
    return [EffectiveAccessResponse.model_validate(entry) for entry in entries]


@router.get("/check", response_model=AccessCheckResponse)
async def check_region_access(
    region: str = Query(..., min_length=1),
    user_id: UUID | None = Query(None, description="Defaults to the calling actor"),
    actor: Actor = Depends(require_actor),
    authorizer: RoleBasedAuthorizer = Depends(get_authorizer),
    service: RegionAccessService = Depends(get_region_access_service),
) -> AccessCheckResponse:
    if user_id is None:
        user_id = actor.user_id
    if user_id != actor.user_id and not authorizer.is_grantor(actor):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "forbidden", "message": "Only grantors may check another user's access"},
        )
    try:
        entry = await service.check(user_id, region)
    except GrantError as error:
        raise http_error(error) from error
    return AccessCheckResponse(
        user_id=user_id,
        region=region,
        permitted=entry is not None,
        access=EffectiveAccessResponse.model_validate(entry) if entry else None,
    )


@router.post("/rebuild", response_model=ProjectionRebuildResponse)
async def rebuild_projection(
    _: Actor = Depends(require_grantor),
    service: RegionAccessService = Depends(get_region_access_service),
) -> ProjectionRebuildResponse:
    try:
        rows = await service.rebuild()
    except GrantError as error:
        raise http_error(error) from error
    return ProjectionRebuildResponse(rows=rows)
