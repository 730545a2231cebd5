"""Audit event emission for grant lifecycle actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Protocol
from uuid import UUID

import httpx
from loguru import logger

from regionaccess_api.core.settings import Settings
from regionaccess_api.observability.grants import get_grant_store


class GrantAuditAction(str, Enum):
    GRANT = "grant"
    EXTEND = "extend"
    REVOKE = "revoke"
    EXPIRE = "expire"


@dataclass(slots=True)
class GrantAuditEvent:
    """Structured record handed to the audit collaborator."""

    action: GrantAuditAction
    grant_id: UUID
    subject_user_id: UUID
    region: str
    actor_user_id: UUID | None
    timestamp: datetime
    reason: str | None = None
    expires_at: datetime | None = None
    previous_expires_at: datetime | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": self.action.value,
            "grant_id": str(self.grant_id),
            "subject_user_id": str(self.subject_user_id),
            "region": self.region,
            "actor_user_id": str(self.actor_user_id) if self.actor_user_id else None,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.expires_at is not None:
            payload["expires_at"] = self.expires_at.isoformat()
        if self.previous_expires_at is not None:
            payload["previous_expires_at"] = self.previous_expires_at.isoformat()
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload


class AuditEmitter(Protocol):
    """Minimal protocol for audit sinks."""

    async def emit(self, event: GrantAuditEvent) -> None:
        ...


class LogAuditEmitter:
    """Writes audit events as structured log records."""

    async def emit(self, event: GrantAuditEvent) -> None:
        logger.bind(audit=event.as_payload()).info("Region grant audit event", action=event.action.value)


class WebhookAuditEmitter:
    """POSTs audit events to an HTTP collector. One attempt, no retries."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def emit(self, event: GrantAuditEvent) -> None:
        close_client = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            close_client = True

        try:
            response = await client.post(self._url, json=event.as_payload())
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


async def emit_best_effort(emitter: AuditEmitter, event: GrantAuditEvent) -> bool:
    """Deliver ``event`` and report success. Delivery failures never propagate."""

    store = get_grant_store()
    try:
        await emitter.emit(event)
    except Exception as exc:
        store.record_audit(delivered=False)
        logger.exception(
            "Region grant audit delivery failed",
            action=event.action.value,
            grant_id=str(event.grant_id),
            error=str(exc),
        )
        return False
    store.record_audit(delivered=True)
    return True


def build_audit_emitter(config: Settings) -> AuditEmitter:
    if config.audit_webhook_url:
        return WebhookAuditEmitter(
            config.audit_webhook_url,
            timeout_seconds=config.audit_webhook_timeout_seconds,
        )
    return LogAuditEmitter()


__all__ = [
    "AuditEmitter",
    "GrantAuditAction",
    "GrantAuditEvent",
    "LogAuditEmitter",
    "WebhookAuditEmitter",
    "build_audit_emitter",
    "emit_best_effort",
]
