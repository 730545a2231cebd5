"""Temporary region access grant services."""

from .access import RegionAccessService
from .assignments import PermanentAssignmentService
from .audit import (
    AuditEmitter,
    GrantAuditAction,
    GrantAuditEvent,
    LogAuditEmitter,
    WebhookAuditEmitter,
    build_audit_emitter,
    emit_best_effort,
)
from .authorization import Actor, RoleBasedAuthorizer
from .errors import (
    GrantAlreadyTerminalError,
    GrantAuthorizationError,
    GrantConflictError,
    GrantError,
    GrantNotFoundError,
    GrantStorageError,
    GrantValidationError,
)
from .lifecycle import GrantFilter, GrantLifecycleService, GrantSummary
from .locks import PairLockRegistry, get_pair_lock_registry
from .projection import EffectiveAccessEntry, EffectiveAccessProjection
from .reconciler import ExpirySweepSummary, GrantExpirationReconciler
from .status import GrantStatus, GrantView, TimeRemaining, derive_status

__all__ = [
    "Actor",
    "AuditEmitter",
    "EffectiveAccessEntry",
    "EffectiveAccessProjection",
    "ExpirySweepSummary",
    "GrantAlreadyTerminalError",
    "GrantAuditAction",
    "GrantAuditEvent",
    "GrantAuthorizationError",
    "GrantConflictError",
    "GrantError",
    "GrantExpirationReconciler",
    "GrantFilter",
    "GrantLifecycleService",
    "GrantNotFoundError",
    "GrantStatus",
    "GrantStorageError",
    "GrantSummary",
    "GrantValidationError",
    "GrantView",
    "LogAuditEmitter",
    "PairLockRegistry",
    "PermanentAssignmentService",
    "RegionAccessService",
    "RoleBasedAuthorizer",
    "TimeRemaining",
    "WebhookAuditEmitter",
    "build_audit_emitter",
    "derive_status",
    "emit_best_effort",
    "get_pair_lock_registry",
]
