"""Transactional helpers shared by the grant services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import GrantStorageError


@asynccontextmanager
async def unit_of_work(session: AsyncSession, *, operation: str) -> AsyncIterator[AsyncSession]:
    """Commit on success, roll back on any failure.

    Store failures surface as :class:`GrantStorageError`; domain errors raised
    inside the block propagate unchanged after the rollback.
    """

    try:
        yield session
        await session.commit()
    except SQLAlchemyError as exc:
        await _safe_rollback(session, operation)
        logger.exception("Region grant storage failure", operation=operation, error=str(exc))
        raise GrantStorageError(f"Storage failure during {operation}") from exc
    except BaseException:
        await _safe_rollback(session, operation)
        raise


async def run_read(session: AsyncSession, statement, *, operation: str):
    """Execute a read statement, translating store failures."""

    try:
        return await session.execute(statement)
    except SQLAlchemyError as exc:
        logger.exception("Region grant storage failure", operation=operation, error=str(exc))
        raise GrantStorageError(f"Storage failure during {operation}") from exc


async def _safe_rollback(session: AsyncSession, operation: str) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError as exc:  # pragma: no cover - connection already gone
        logger.warning("Rollback failed", operation=operation, error=str(exc))


__all__ = ["run_read", "unit_of_work"]
