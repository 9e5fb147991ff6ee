"""
access_roster.bootstrap

Composition root for the roster engine.

Responsibilities:
- Build the codec, registry, cache and store from settings.
- Open the default roster store (engine + sessionmaker) when the caller has none.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from access_roster.cache import CacheBackend, RosterCache
from access_roster.db.init_db import init_db
from access_roster.db.session import create_engine, create_sessionmaker
from access_roster.events import EventDispatcher
from access_roster.observability.logging import get_logger
from access_roster.planner import EntityMapping, EntityRegistry, StoreRegistry
from access_roster.roles.codec import KeyCodec, SecretSource
from access_roster.roles.defaults import DEFAULT_ROLES
from access_roster.roles.descriptor import RoleDescriptor
from access_roster.roles.registry import RoleRegistry
from access_roster.services.assignment_store import AssignmentStore
from access_roster.settings import Settings, get_settings

log = get_logger(__name__)


def build_codec(settings: Settings, *, secret: SecretSource | None = None) -> KeyCodec:
    return KeyCodec(
        settings.key_storage,
        secret if secret is not None else settings.app_secret,
        allow_plain_fallback=settings.allow_plain_key_fallback,
    )


def build_registry(
    settings: Settings,
    roles: Iterable[RoleDescriptor] = DEFAULT_ROLES,
    *,
    secret: SecretSource | None = None,
) -> RoleRegistry:
    return RoleRegistry(roles, build_codec(settings, secret=secret))


def build_store(
    settings: Settings,
    *,
    stores: Mapping[str, async_sessionmaker[AsyncSession]],
    roles: Iterable[RoleDescriptor] = DEFAULT_ROLES,
    entities: Iterable[EntityMapping] = (),
    cache_backend: CacheBackend | None = None,
    events: EventDispatcher | None = None,
    secret: SecretSource | None = None,
) -> AssignmentStore:
    registry = build_registry(settings, roles, secret=secret)
    store = AssignmentStore(
        settings=settings,
        registry=registry,
        stores=StoreRegistry(stores),
        entities=EntityRegistry(list(entities)),
        cache=RosterCache(settings.cache, cache_backend),
        events=events,
    )
    log.info(
        "roster.store_built",
        strategy=settings.assignment_strategy,
        key_storage=settings.key_storage,
        multitenancy=settings.multitenancy.enabled,
        cache=settings.cache.enabled,
        roles=len(registry),
    )
    return store


async def open_default_store(
    settings: Settings | None = None, *, create_tables: bool = False, **kwargs
) -> tuple[AsyncEngine, AssignmentStore]:
    """Create an engine for `settings.database_url` and a store bound to it."""

    settings = settings if settings is not None else get_settings()
    engine = create_engine(settings)
    if create_tables:
        # Dev/test convenience; production relies on Alembic migrations.
        await init_db(engine)
    store = build_store(
        settings, stores={settings.roster_store: create_sessionmaker(engine)}, **kwargs
    )
    return engine, store
