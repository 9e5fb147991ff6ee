"""
tests.conftest

Shared fixtures: temp-file SQLite stores, seeded host entities, a store factory and cache doubles.
"""

from __future__ import annotations

import asyncio
import fnmatch
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from access_roster.bootstrap import build_store
from access_roster.cache import CacheBackend, MemoryCacheBackend
from access_roster.db.init_db import init_db
from access_roster.db.session import create_engine, create_sessionmaker
from access_roster.services.assignment_store import AssignmentStore
from access_roster.settings import Settings
from tests.entities import EntityBase, Organization, Project, User, entity_mappings, seed_rows

TEST_SECRET = "test-secret-0123456789"


async def open_sqlite(path) -> AsyncEngine:
    engine = create_engine(f"sqlite+aiosqlite:///{path}")
    await init_db(engine)
    async with engine.begin() as conn:
        await conn.run_sync(EntityBase.metadata.create_all)
    return engine


async def seed(sessions: async_sessionmaker[AsyncSession]) -> None:
    async with sessions() as session:
        async with session.begin():
            session.add_all(seed_rows())


class InMemoryRedis:
    """Dict-backed double for the `redis.asyncio.Redis` calls the cache backend makes."""

    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> bytes | None:
        return self.data.get(key)

    async def set(self, key: str, value: bytes, ex: int | None = None) -> None:
        self.data[key] = value
        self.ttls[key] = ex

    async def delete(self, *keys: str) -> int:
        return sum(self.data.pop(key, None) is not None for key in keys)

    async def scan_iter(self, match: str):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key


class GatedBackend(MemoryCacheBackend):
    """Memory backend whose next `set` waits until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.armed = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if self.armed:
            self.armed = False
            self.entered.set()
            await self.release.wait()
        await super().set(key, value, ttl)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    eng = await open_sqlite(tmp_path / "roster.db")
    yield eng
    await eng.dispose()


@pytest.fixture
def sessions(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest.fixture
def make_store(sessions) -> Callable[..., AssignmentStore]:
    def _make(*, cache_backend: CacheBackend | None = None, **overrides: Any) -> AssignmentStore:
        settings = Settings(app_secret=TEST_SECRET, **overrides)
        return build_store(
            settings,
            stores={"default": sessions},
            entities=entity_mappings(),
            cache_backend=cache_backend,
        )

    return _make


@pytest_asyncio.fixture
async def seeded(sessions) -> dict[str, list[Any]]:
    await seed(sessions)
    async with sessions() as session:
        return {
            "users": [await session.get(User, i) for i in (1, 2, 3)],
            "projects": [await session.get(Project, i) for i in (1, 2)],
            "organizations": [await session.get(Organization, i) for i in (1, 2)],
        }
