from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, Field

from regionaccess_api.api.dependencies.actors import require_grantor
from regionaccess_api.api.dependencies.grants import get_assignment_service, http_error
from regionaccess_api.core.settings import settings
from regionaccess_api.services.access_grants import Actor, GrantError, PermanentAssignmentService

router = APIRouter(prefix="/region-assignments", tags=["Region Assignments"])


class AssignmentCreateRequest(BaseModel):
    user_id: UUID
    region: str
    access_level: str | None = Field(default=None, description="Defaults to the configured access level")


class AssignmentResponse(BaseModel):
    id: UUID
    user_id: UUID
    region: str
    access_level: str
    assigned_by_user_id: UUID
    assigned_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_region(
    payload: AssignmentCreateRequest,
    actor: Actor = Depends(require_grantor),
    service: PermanentAssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    try:
        assignment = await service.assign(
            user_id=payload.user_id,
            region=payload.region,
            access_level=payload.access_level or settings.default_access_level,
            assigned_by_user_id=actor.user_id,
        )
    except GrantError as error:
        raise http_error(error) from error
    return AssignmentResponse.model_validate(assignment)


@router.get("/{user_id}", response_model=list[AssignmentResponse])
async def list_assignments(
    user_id: UUID,
    _: Actor = Depends(require_grantor),
    service: PermanentAssignmentService = Depends(get_assignment_service),
) -> list[AssignmentResponse]:
    try:
        assignments = await service.list_for_user(user_id)
    except GrantError as error:
        raise http_error(error) from error
    return [AssignmentResponse.model_validate(item) for item in assignments]


@router.delete("/{user_id}/{region}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_region(
    user_id: UUID,
    region: str,
    actor: Actor = Depends(require_grantor),
    service: PermanentAssignmentService = Depends(get_assignment_service),
) -> Response:
    try:
        await service.unassign(user_id=user_id, region=region, actor_user_id=actor.user_id)
    except GrantError as error:
        raise http_error(error) from error
    return Response(status_code=status.HTTP_204_NO_CONTENT)
