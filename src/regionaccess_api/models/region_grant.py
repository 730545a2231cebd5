"""Temporary region access grant store."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID

from regionaccess_api.db.base import Base


class RegionAccessGrant(Base):
    """One row per grant. Revocation and expiry are marked, never deleted.

    Status has no column; it is derived from ``expires_at`` and
    ``revoked_at`` at observation time.
    """

    __tablename__ = "region_access_grants"
    __table_args__ = (
        Index("ix_region_access_grants_subject_region", "subject_user_id", "region"),
        Index("ix_region_access_grants_expires_at", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    subject_user_id = Column(UUID(as_uuid=True), nullable=False)
    region = Column(String(128), nullable=False)
    access_level = Column(String(32), nullable=False)
    granted_by_user_id = Column(UUID(as_uuid=True), nullable=False)
    granted_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    reason = Column(Text, nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by_user_id = Column(UUID(as_uuid=True), nullable=True)
    revoked_reason = Column(Text, nullable=True)


class RegionAccessGrantExpiry(Base):
    """Marks a naturally expired grant as folded in by the reconciler."""

    __tablename__ = "region_access_grant_expiries"

    grant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("region_access_grants.id", ondelete="RESTRICT"),
        primary_key=True,
    )
    reconciled_at = Column(DateTime(timezone=True), nullable=False)
