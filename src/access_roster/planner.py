"""
access_roster.planner

Cross-store query planner for entity listings.

Responsibilities:
- Map type tags to ORM entity models and the store (sessionmaker) holding them.
- Turn ORM instances into identity references.
- Pick a join (correlated EXISTS) or id-list strategy and return identical, id-ordered results.

Notes:
- The join strategy needs the entity table and the roster table in one database and an id
  column whose string cast matches the persisted id. UUID columns are stored differently per
  dialect, so they always take the id-list path.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy import String, cast, distinct, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from access_roster.db.models import Assignment
from access_roster.identity import IdentityRef, SupportsIdentity
from access_roster.observability.logging import get_logger
from access_roster.settings import Settings

log = get_logger(__name__)

Side = Literal["subject", "target"]
IdFormat = Literal["integer", "uuid", "ulid"]


class QueryStrategy(enum.StrEnum):
    join = "join"
    id_list = "id_list"


@dataclass(frozen=True, slots=True)
class EntityMapping:
    type_tag: str
    model: type
    id_attribute: str = "id"
    # None defers to `Settings.id_format`.
    id_format: IdFormat | None = None
    # Attribute holding the entity's tenant key; a tenant model points this at its own id.
    tenant_attribute: str | None = None
    store: str = "default"

    @property
    def id_column(self) -> Any:
        return getattr(self.model, self.id_attribute)

    def parse_id(self, raw: str, default_format: IdFormat = "integer") -> Any:
        id_format = self.id_format or default_format
        if id_format == "integer":
            return int(raw)
        if id_format == "uuid":
            return uuid.UUID(raw)
        return raw

    def ref_for(self, instance: Any) -> IdentityRef:
        ident = getattr(instance, self.id_attribute)
        tenant = getattr(instance, self.tenant_attribute) if self.tenant_attribute else None
        return IdentityRef.of(self.type_tag, ident, tenant)


class EntityRegistry:
    def __init__(self, mappings: Collection[EntityMapping] = ()) -> None:
        self._by_tag: dict[str, EntityMapping] = {}
        self._by_model: dict[type, EntityMapping] = {}
        for mapping in mappings:
            self.register(mapping)

    def register(self, mapping: EntityMapping) -> None:
        if mapping.type_tag in self._by_tag:
            raise ValueError(f"type tag {mapping.type_tag!r} is already registered")
        self._by_tag[mapping.type_tag] = mapping
        self._by_model[mapping.model] = mapping

    def for_tag(self, type_tag: str) -> EntityMapping:
        try:
            return self._by_tag[type_tag]
        except KeyError:
            raise ValueError(f"no entity mapping registered for {type_tag!r}") from None

    def for_instance(self, instance: Any) -> EntityMapping | None:
        for klass in type(instance).__mro__:
            mapping = self._by_model.get(klass)
            if mapping is not None:
                return mapping
        return None

    def ref_for(self, value: Any) -> IdentityRef:
        if isinstance(value, IdentityRef):
            return value
        if isinstance(value, SupportsIdentity):
            return value.roster_identity()
        mapping = self.for_instance(value)
        if mapping is None:
            raise ValueError(f"cannot derive a roster identity from {type(value).__name__}")
        return mapping.ref_for(value)


class StoreRegistry:
    def __init__(self, stores: Mapping[str, async_sessionmaker[AsyncSession]]) -> None:
        self._stores = dict(stores)

    def get(self, name: str) -> async_sessionmaker[AsyncSession]:
        try:
            return self._stores[name]
        except KeyError:
            raise ValueError(f"unknown store {name!r}") from None


class QueryPlanner:
    def __init__(
        self,
        *,
        settings: Settings,
        stores: StoreRegistry,
        entities: EntityRegistry,
    ) -> None:
        self._settings = settings
        self._stores = stores
        self._entities = entities

    def strategy_for(self, mapping: EntityMapping) -> QueryStrategy:
        same_store = mapping.store == self._settings.roster_store
        joinable = same_store and self._id_format(mapping) != "uuid"
        forced = self._settings.query_strategy
        if forced == "id_list" or not joinable:
            return QueryStrategy.id_list
        return QueryStrategy.join

    def _id_format(self, mapping: EntityMapping) -> IdFormat:
        return mapping.id_format or self._settings.id_format

    # Public listings -------------------------------------------------------

    async def participants(
        self,
        target: IdentityRef,
        subject_type: str,
        *,
        role_keys: Collection[str] | None = None,
    ) -> list[Any]:
        criteria = [
            Assignment.target_type == target.type_tag,
            Assignment.target_id == target.id,
        ]
        if role_keys is not None:
            criteria.append(Assignment.role_key.in_(list(role_keys)))
        return await self._select(self._entities.for_tag(subject_type), "subject", criteria)

    async def assigned_targets(
        self,
        subject: IdentityRef,
        target_type: str,
        *,
        role_keys: Collection[str] | None = None,
        tenant_key: str | None = None,
    ) -> list[Any]:
        criteria = [
            Assignment.subject_type == subject.type_tag,
            Assignment.subject_id == subject.id,
        ]
        if role_keys is not None:
            criteria.append(Assignment.role_key.in_(list(role_keys)))
        if tenant_key is not None:
            criteria.append(
                or_(Assignment.tenant_key == tenant_key, Assignment.tenant_key.is_(None))
            )
        return await self._select(self._entities.for_tag(target_type), "target", criteria)

    async def not_assigned_to(self, target: IdentityRef, subject_type: str) -> list[Any]:
        criteria = [
            Assignment.target_type == target.type_tag,
            Assignment.target_id == target.id,
        ]
        return await self._select(
            self._entities.for_tag(subject_type), "subject", criteria, negate=True
        )

    # Strategies ------------------------------------------------------------

    async def _select(
        self,
        mapping: EntityMapping,
        side: Side,
        criteria: list[Any],
        *,
        negate: bool = False,
    ) -> list[Any]:
        strategy = self.strategy_for(mapping)
        log.debug(
            "roster.planner.strategy",
            entity=mapping.type_tag,
            side=side,
            strategy=str(strategy),
            negate=negate,
        )
        if strategy is QueryStrategy.join:
            return await self._select_join(mapping, side, criteria, negate=negate)
        return await self._select_id_list(mapping, side, criteria, negate=negate)

    async def _select_join(
        self, mapping: EntityMapping, side: Side, criteria: list[Any], *, negate: bool
    ) -> list[Any]:
        type_col, id_col = _side_columns(side)
        match = exists(
            select(Assignment.id).where(
                type_col == mapping.type_tag,
                id_col == cast(mapping.id_column, String),
                *criteria,
            )
        )
        stmt = select(mapping.model).where(~match if negate else match).order_by(mapping.id_column)
        async with self._stores.get(mapping.store)() as session:
            return list((await session.execute(stmt)).scalars())

    async def _select_id_list(
        self, mapping: EntityMapping, side: Side, criteria: list[Any], *, negate: bool
    ) -> list[Any]:
        type_col, id_col = _side_columns(side)
        id_stmt = select(distinct(id_col)).where(type_col == mapping.type_tag, *criteria)
        async with self._stores.get(self._settings.roster_store)() as session:
            raw_ids = list((await session.execute(id_stmt)).scalars())

        if not raw_ids and not negate:
            return []
        ids = [mapping.parse_id(raw, self._id_format(mapping)) for raw in raw_ids]
        stmt = select(mapping.model).order_by(mapping.id_column)
        if ids:
            id_col = mapping.id_column
            stmt = stmt.where(id_col.not_in(ids) if negate else id_col.in_(ids))
        async with self._stores.get(mapping.store)() as session:
            return list((await session.execute(stmt)).scalars())


def _side_columns(side: Side) -> tuple[Any, Any]:
    if side == "subject":
        return Assignment.subject_type, Assignment.subject_id
    return Assignment.target_type, Assignment.target_id


# --- Module Notes -----------------------------------------------------------
# Result equivalence between strategies is covered by tests/test_planner.py, which runs
# both paths over the same data.
