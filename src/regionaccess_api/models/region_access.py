"""Permanent assignments and the effective-access projection."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from regionaccess_api.db.base import Base


class PermanentRegionAssignment(Base):
    """Record of truth for permanent (non-expiring) region access."""

    __tablename__ = "permanent_region_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "region", name="uq_permanent_region_assignments_user_region"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    region = Column(String(128), nullable=False)
    access_level = Column(String(32), nullable=False)
    assigned_by_user_id = Column(UUID(as_uuid=True), nullable=False)
    assigned_at = Column(DateTime(timezone=True), nullable=False)


class EffectiveRegionAccess(Base):
    """Derived row read by map rendering and tool gating.

    ``justification`` is ``permanent`` or ``temporary:<grant id>``.
    """

    __tablename__ = "effective_region_access"
    __table_args__ = (
        UniqueConstraint("user_id", "region", name="uq_effective_region_access_user_region"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    region = Column(String(128), nullable=False)
    access_level = Column(String(32), nullable=False)
    justification = Column(String(64), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
