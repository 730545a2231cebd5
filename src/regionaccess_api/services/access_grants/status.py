"""Pure status and remaining-time derivations for grants."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from regionaccess_api.core.clock import as_utc
from regionaccess_api.models.region_grant import RegionAccessGrant


class GrantStatus(str, Enum):
    """Observable grant state, always derived and never stored."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self is not GrantStatus.ACTIVE


def derive_status(*, now: datetime, expires_at: datetime, revoked_at: datetime | None) -> GrantStatus:
    if revoked_at is not None:
        return GrantStatus.REVOKED
    if as_utc(now) < as_utc(expires_at):
        return GrantStatus.ACTIVE
    return GrantStatus.EXPIRED


def grant_status(grant: RegionAccessGrant, now: datetime) -> GrantStatus:
    return derive_status(now=now, expires_at=grant.expires_at, revoked_at=grant.revoked_at)


def seconds_until(expires_at: datetime, now: datetime) -> int:
    """Whole seconds left before ``expires_at``, floored at zero."""

    remaining = (as_utc(expires_at) - as_utc(now)).total_seconds()
    return max(0, int(remaining))


@dataclass(frozen=True, slots=True)
class TimeRemaining:
    """Human-readable breakdown of the time left on a grant."""

    expired: bool
    display: str
    days: int
    hours: int
    minutes: int
    seconds: int
    total_seconds: int

    @classmethod
    def from_seconds(cls, total_seconds: int, *, expired: bool | None = None) -> "TimeRemaining":
        total_seconds = max(0, int(total_seconds))
        if expired is None:
            expired = total_seconds == 0
        if expired:
            return cls(expired=True, display="Expired", days=0, hours=0, minutes=0, seconds=0, total_seconds=0)

        days, rest = divmod(total_seconds, 86400)
        hours, rest = divmod(rest, 3600)
        minutes, secs = divmod(rest, 60)

        parts: list[str] = []
        if days:
            parts.append(f"{days}d")
        if hours:
            parts.append(f"{hours}h")
        if minutes:
            parts.append(f"{minutes}m")
        # seconds are noise once a grant runs for days
        if secs and not days:
            parts.append(f"{secs}s")

        return cls(
            expired=False,
            display=" ".join(parts) or "Just now",
            days=days,
            hours=hours,
            minutes=minutes,
            seconds=secs,
            total_seconds=total_seconds,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "expired": self.expired,
            "display": self.display,
            "days": self.days,
            "hours": self.hours,
            "minutes": self.minutes,
            "seconds": self.seconds,
            "total_seconds": self.total_seconds,
        }


@dataclass(frozen=True, slots=True)
class GrantView:
    """Read model for a grant with its status evaluated at ``observed_at``."""

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
    time_remaining: TimeRemaining
    observed_at: datetime

    @classmethod
    def from_grant(cls, grant: RegionAccessGrant, now: datetime) -> "GrantView":
        status = grant_status(grant, now)
        remaining = seconds_until(grant.expires_at, now) if status is GrantStatus.ACTIVE else 0
        return cls(
            id=grant.id,
            subject_user_id=grant.subject_user_id,
            region=grant.region,
            access_level=grant.access_level,
            granted_by_user_id=grant.granted_by_user_id,
            granted_at=as_utc(grant.granted_at),
            expires_at=as_utc(grant.expires_at),
            reason=grant.reason,
            revoked_at=as_utc(grant.revoked_at) if grant.revoked_at else None,
            revoked_by_user_id=grant.revoked_by_user_id,
            revoked_reason=grant.revoked_reason,
            status=status,
            seconds_remaining=remaining,
            time_remaining=TimeRemaining.from_seconds(remaining, expired=status is not GrantStatus.ACTIVE),
            observed_at=as_utc(now),
        )


__all__ = [
    "GrantStatus",
    "GrantView",
    "TimeRemaining",
    "derive_status",
    "grant_status",
    "seconds_until",
]
