"""Recurring job entrypoints for region access maintenance."""

__all__ = ["grant_expiry"]
