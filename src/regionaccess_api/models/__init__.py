"""SQLAlchemy models package."""

from .region_access import EffectiveRegionAccess, PermanentRegionAssignment  # noqa: F401
from .region_grant import RegionAccessGrant, RegionAccessGrantExpiry  # noqa: F401
