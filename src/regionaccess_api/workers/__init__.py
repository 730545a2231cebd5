"""Background workers supporting async processing."""

from .grant_expiry import GrantExpiryWorker

__all__ = ["GrantExpiryWorker"]
