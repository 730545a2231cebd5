"""Service wiring for the region access endpoints."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.clock import Clock, get_system_clock
from regionaccess_api.core.settings import settings
from regionaccess_api.db.session import get_session
from regionaccess_api.services.access_grants import (
    AuditEmitter,
    GrantAlreadyTerminalError,
    GrantAuthorizationError,
    GrantConflictError,
    GrantError,
    GrantExpirationReconciler,
    GrantLifecycleService,
    GrantNotFoundError,
    GrantStorageError,
    GrantValidationError,
    PairLockRegistry,
    PermanentAssignmentService,
    RegionAccessService,
    build_audit_emitter,
    get_pair_lock_registry,
)

_STATUS_BY_ERROR: tuple[tuple[type[GrantError], int], ...] = (
    (GrantValidationError, status.HTTP_400_BAD_REQUEST),
    (GrantAuthorizationError, status.HTTP_403_FORBIDDEN),
    (GrantNotFoundError, status.HTTP_404_NOT_FOUND),
    (GrantConflictError, status.HTTP_409_CONFLICT),
    (GrantAlreadyTerminalError, status.HTTP_409_CONFLICT),
    (GrantStorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def get_clock() -> Clock:
    return get_system_clock()


@lru_cache
def _default_audit_emitter() -> AuditEmitter:
    return build_audit_emitter(settings)


def get_audit_emitter() -> AuditEmitter:
    return _default_audit_emitter()


def get_pair_locks() -> PairLockRegistry:
    return get_pair_lock_registry()


def get_lifecycle_service(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    audit_emitter: AuditEmitter = Depends(get_audit_emitter),
    locks: PairLockRegistry = Depends(get_pair_locks),
) -> GrantLifecycleService:
    return GrantLifecycleService(session, clock=clock, audit_emitter=audit_emitter, locks=locks)


def get_reconciler(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    audit_emitter: AuditEmitter = Depends(get_audit_emitter),
    locks: PairLockRegistry = Depends(get_pair_locks),
) -> GrantExpirationReconciler:
    return GrantExpirationReconciler(session, clock=clock, audit_emitter=audit_emitter, locks=locks)


def get_assignment_service(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    locks: PairLockRegistry = Depends(get_pair_locks),
) -> PermanentAssignmentService:
    return PermanentAssignmentService(session, clock=clock, locks=locks)


def get_region_access_service(
    session: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
    locks: PairLockRegistry = Depends(get_pair_locks),
) -> RegionAccessService:
    return RegionAccessService(session, clock=clock, locks=locks)


def http_error(error: GrantError) -> HTTPException:
    """Translate a service failure into the API error envelope."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            status_code = mapped
            break
    detail: dict[str, object] = {"code": error.code, "message": error.message}
    if isinstance(error, GrantAlreadyTerminalError):
        detail["status"] = error.status.value
    return HTTPException(status_code=status_code, detail=detail)


__all__ = [
    "get_assignment_service",
    "get_audit_emitter",
    "get_clock",
    "get_lifecycle_service",
    "get_pair_locks",
    "get_reconciler",
    "get_region_access_service",
    "http_error",
]
