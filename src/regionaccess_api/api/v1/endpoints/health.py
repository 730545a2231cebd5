from __future__ import annotations

from typing import Any, Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from regionaccess_api.core.settings import settings
from regionaccess_api.db.session import get_session
from regionaccess_api.observability.grants import get_grant_store
from regionaccess_api.observability.scheduler import get_scheduler_store

router = APIRouter()

ComponentState = Literal["ready", "starting", "disabled", "error", "degraded"]


class ComponentStatus(BaseModel):
    status: ComponentState
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]
    grants: Dict[str, Any]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    grant_snapshot = get_grant_store().snapshot()
    worker = getattr(request.app.state, "grant_expiry_worker", None)
    if settings.grant_expiry_worker_enabled and worker is not None:
        running = bool(getattr(worker, "is_running", False))
        components["grant_expiry_worker"] = ComponentStatus(
            status="ready" if running else "starting",
            detail=None if running else "Grant expiry worker not running",
            last_success_at=worker.last_run_at.isoformat() if worker.last_run_at else None,
        )
        if not running and status == "ready":
            status = "degraded"
    else:
        components["grant_expiry_worker"] = ComponentStatus(
            status="disabled",
            detail="Grant expiry worker disabled via settings",
        )

    scheduler = getattr(request.app.state, "job_scheduler", None)
    if settings.job_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        scheduler_status: ComponentState = "ready" if running else "starting"
        detail = None if running else "Job scheduler not running"
        totals = get_scheduler_store().snapshot().totals
        if totals.get("run_failures"):
            scheduler_status = "degraded"
            detail = f"{totals['run_failures']} scheduled run(s) failed"
        if scheduler_status != "ready" and status == "ready":
            status = "degraded"
        components["job_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    else:
        components["job_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Job scheduler disabled via settings",
        )

    if grant_snapshot.audit.get("failed") and status == "ready":
        status = "degraded"
    components["audit_delivery"] = ComponentStatus(
        status="degraded" if grant_snapshot.audit.get("failed") else "ready",
        detail=(
            f"{grant_snapshot.audit['failed']} audit event(s) not delivered"
            if grant_snapshot.audit.get("failed")
            else None
        ),
    )

    return ReadinessPayload(status=status, components=components, grants=grant_snapshot.as_dict())
