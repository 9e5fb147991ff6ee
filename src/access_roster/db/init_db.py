"""
access_roster.db.init_db

DB initialization helpers (dev/test convenience).

Responsibilities:
- Create the roster table for local development and tests.
- Keep the production migration workflow separate (Alembic).
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from access_roster.db import models  # noqa: F401  # registers the roster table on Base.metadata
from access_roster.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    """
    Dev/test bootstrap: create tables if they don't exist.
    Production should rely on Alembic migrations.
    """

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
