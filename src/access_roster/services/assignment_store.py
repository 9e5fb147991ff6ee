"""
access_roster.services.assignment_store

Assignment lifecycle service (transaction + cache + event owner).

Responsibilities:
- Assign, change and remove roles on (subject, target) pairs under the configured strategy.
- Answer role checks and listings through the cache.
- Gate new relationships through the tenant guard.
- Invalidate caches and emit domain events once writes have committed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from access_roster.cache import CacheKind, RosterCache
from access_roster.db.models import Assignment
from access_roster.db.repositories.assignments import AssignmentRepo
from access_roster.errors import (
    CodecError,
    DuplicateAssignmentConflict,
    MisconfiguredMultitenancy,
    RoleNotFound,
)
from access_roster.events import EventDispatcher, RoleAssigned, RoleChanged, RoleRemoved
from access_roster.identity import IdentityRef
from access_roster.observability.logging import get_logger
from access_roster.planner import EntityRegistry, QueryPlanner, StoreRegistry
from access_roster.roles.descriptor import RoleDescriptor
from access_roster.roles.registry import RoleIdentifier, RoleRegistry
from access_roster.settings import Settings
from access_roster.tenancy import TenantGuard

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AssignmentView:
    """Detached, immutable copy of a roster row (safe to cache)."""

    subject: IdentityRef
    target: IdentityRef
    role_key: str
    tenant_key: str | None

    @classmethod
    def from_row(cls, row: Assignment) -> AssignmentView:
        return cls(
            subject=IdentityRef(row.subject_type, row.subject_id),
            target=IdentityRef(row.target_type, row.target_id),
            role_key=row.role_key,
            tenant_key=row.tenant_key,
        )


@dataclass(frozen=True, slots=True)
class Participants:
    rows: tuple[AssignmentView, ...]

    def subjects(self) -> list[IdentityRef]:
        # One entry per subject, in assignment order.
        return list(dict.fromkeys(row.subject for row in self.rows))

    def ids(self, subject_type: str | None = None) -> list[str]:
        return [s.id for s in self.subjects() if subject_type is None or s.type_tag == subject_type]

    def exclude(self, *subjects: IdentityRef) -> Participants:
        skip = set(subjects)
        return Participants(tuple(row for row in self.rows if row.subject not in skip))

    def with_keys(self, role_keys: Iterable[str]) -> Participants:
        keys = set(role_keys)
        return Participants(tuple(row for row in self.rows if row.role_key in keys))

    def __iter__(self):
        return iter(self.subjects())

    def __len__(self) -> int:
        return len(self.subjects())

    def __contains__(self, subject: object) -> bool:
        return any(row.subject == subject for row in self.rows)


class AssignmentStore:
    def __init__(
        self,
        *,
        settings: Settings,
        registry: RoleRegistry,
        stores: StoreRegistry,
        entities: EntityRegistry | None = None,
        cache: RosterCache | None = None,
        events: EventDispatcher | None = None,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._codec = registry.codec
        self._sessions: async_sessionmaker[AsyncSession] = stores.get(settings.roster_store)
        self._entities = entities if entities is not None else EntityRegistry()
        self._planner = QueryPlanner(settings=settings, stores=stores, entities=self._entities)
        self._cache = cache if cache is not None else RosterCache(settings.cache)
        self._guard = TenantGuard(enabled=settings.multitenancy.enabled)
        self.events = events if events is not None else EventDispatcher()

    @property
    def registry(self) -> RoleRegistry:
        return self._registry

    @property
    def planner(self) -> QueryPlanner:
        return self._planner

    # Writes ----------------------------------------------------------------

    async def assign(self, subject: Any, target: Any, role: RoleIdentifier) -> bool:
        """
        Give `subject` the role on `target`; returns whether a row was written.

        replace: the pair ends up holding exactly this role (delete + insert, one transaction).
        add: the role is added next to existing ones. Re-assigning a held role is a no-op.
        """

        s, t = self._ref(subject), self._ref(target)
        role_d = self._registry.resolve(role)
        role_key = self._codec.encode(role_d)
        accepted = self._codec.accepted_keys(role_d)

        replaced: list[AssignmentView] = []
        async with self._sessions() as session:
            repo = AssignmentRepo(session)
            async with session.begin():
                existing = await repo.list_for_pair(s, t, for_update=True)
                if existing:
                    # Established relationship: keep its tenant, skip re-validation.
                    tenant_key = existing[0].tenant_key
                else:
                    tenant_key = self._guard.validate(s, t)

                held = [row for row in existing if row.role_key in accepted]
                if self._settings.assignment_strategy == "replace":
                    if len(existing) == 1 and held:
                        return False
                    replaced = [AssignmentView.from_row(row) for row in existing]
                    await repo.delete_ids([row.id for row in existing])
                elif held:
                    return False

                written = await self._insert(
                    session, repo, s, t, role_key=role_key, tenant_key=tenant_key
                )

        await self._cache.invalidate_pair(s, t, self._affected_keys(accepted, replaced))
        for view in replaced:
            self.events.dispatch(RoleRemoved(s, t, self._decode_or_none(view.role_key)))
        if written:
            log.info(
                "roster.role_assigned",
                subject=str(s),
                target=str(t),
                role=role_d.name,
                replaced=len(replaced),
                tenant=tenant_key,
            )
            self.events.dispatch(RoleAssigned(s, t, role_d))
        return written

    async def _insert(
        self,
        session: AsyncSession,
        repo: AssignmentRepo,
        subject: IdentityRef,
        target: IdentityRef,
        *,
        role_key: str,
        tenant_key: str | None,
    ) -> bool:
        # The unique constraint is the authority; a lost race surfaces here.
        try:
            async with session.begin_nested():
                await repo.add(
                    subject=subject, target=target, role_key=role_key, tenant_key=tenant_key
                )
        except IntegrityError as exc:
            if self._settings.duplicate_policy == "raise":
                raise DuplicateAssignmentConflict(
                    f"{subject} already holds this role on {target}"
                ) from exc
            log.info("roster.assign.duplicate_ignored", subject=str(subject), target=str(target))
            return False
        return True

    async def change_role_on(self, subject: Any, target: Any, new_role: RoleIdentifier) -> bool:
        """
        Collapse an existing pair onto `new_role`, bypassing the tenant guard.

        A pair without any assignment is a new relationship and goes through `assign`.
        """

        s, t = self._ref(subject), self._ref(target)
        role_d = self._registry.resolve(new_role)
        role_key = self._codec.encode(role_d)

        async with self._sessions() as session:
            repo = AssignmentRepo(session)
            async with session.begin():
                existing = await repo.list_for_pair(s, t, for_update=True)
                if existing:
                    kept, dropped = existing[0], existing[1:]
                    if not dropped and kept.role_key == role_key:
                        return False
                    old_key = kept.role_key
                    dropped_views = [AssignmentView.from_row(row) for row in dropped]
                    await repo.delete_ids([row.id for row in dropped])
                    await repo.set_role_key(kept, role_key)

        if not existing:
            return await self.assign(s, t, role_d)

        touched = [AssignmentView(s, t, old_key, kept.tenant_key), *dropped_views]
        await self._cache.invalidate_pair(
            s, t, self._affected_keys(self._codec.accepted_keys(role_d), touched)
        )
        old_role = self._decode_or_none(old_key)
        for view in dropped_views:
            self.events.dispatch(RoleRemoved(s, t, self._decode_or_none(view.role_key)))
        log.info(
            "roster.role_changed",
            subject=str(s),
            target=str(t),
            old_role=old_role.name if old_role else None,
            new_role=role_d.name,
        )
        self.events.dispatch(RoleChanged(s, t, old_role, role_d))
        return True

    async def remove(self, subject: Any, target: Any) -> int:
        s, t = self._ref(subject), self._ref(target)
        async with self._sessions() as session:
            repo = AssignmentRepo(session)
            async with session.begin():
                existing = await repo.list_for_pair(s, t, for_update=True)
                rows = [AssignmentView.from_row(r) for r in existing]
                removed = await repo.delete_ids([r.id for r in existing])

        await self._cache.invalidate_pair(s, t, self._affected_keys((), rows))
        if rows:
            log.info("roster.roles_removed", subject=str(s), target=str(t), count=removed)
        for view in rows:
            self.events.dispatch(RoleRemoved(s, t, self._decode_or_none(view.role_key)))
        return removed

    async def destroy_tenant_roles(self, tenant_key: Any) -> int:
        if not self._settings.multitenancy.enabled:
            raise MisconfiguredMultitenancy(
                "destroy_tenant_roles requires multitenancy to be enabled"
            )
        tenant_key = str(tenant_key)
        async with self._sessions() as session:
            repo = AssignmentRepo(session)
            async with session.begin():
                rows = await repo.list_for_tenant(tenant_key)
                views = [AssignmentView.from_row(r) for r in rows]
                removed = await repo.delete_ids([r.id for r in rows])

        pairs: dict[tuple[IdentityRef, IdentityRef], list[AssignmentView]] = {}
        for view in views:
            pairs.setdefault((view.subject, view.target), []).append(view)
        for (s, t), pair_rows in pairs.items():
            await self._cache.invalidate_pair(s, t, self._affected_keys((), pair_rows))
        for view in views:
            self.events.dispatch(
                RoleRemoved(view.subject, view.target, self._decode_or_none(view.role_key))
            )
        log.info("roster.tenant_roles_destroyed", tenant=tenant_key, count=removed)
        return removed

    # Checks ----------------------------------------------------------------

    async def check(self, subject: Any, target: Any, role: RoleIdentifier) -> bool:
        s, t = self._ref(subject), self._ref(target)
        try:
            role_d = self._registry.resolve(role)
        except RoleNotFound:
            return False
        accepted = self._codec.accepted_keys(role_d)

        async def load() -> bool:
            async with self._sessions() as session:
                return await AssignmentRepo(session).exists(s, t, accepted)

        key = self._cache.role_check_key(s, t, self._codec.encode(role_d))
        return await self._cache.remember(CacheKind.role_check, key, load)

    has_role_on = check

    async def has_any_role_on(self, subject: Any, target: Any) -> bool:
        s, t = self._ref(subject), self._ref(target)
        async with self._sessions() as session:
            return await AssignmentRepo(session).exists(s, t)

    async def get_role_on(self, subject: Any, target: Any) -> RoleDescriptor | None:
        s, t = self._ref(subject), self._ref(target)
        async with self._sessions() as session:
            rows = await AssignmentRepo(session).list_for_pair(s, t)
        if not rows:
            return None
        # Undecodable keys are a data-integrity problem and surface as CodecError.
        return self._registry.decode_key(rows[0].role_key)

    async def get_roles_on(self, subject: Any, target: Any) -> list[RoleDescriptor]:
        s, t = self._ref(subject), self._ref(target)
        async with self._sessions() as session:
            rows = await AssignmentRepo(session).list_for_pair(s, t)
        roles = {self._registry.decode_key(row.role_key) for row in rows}
        return sorted(roles, key=lambda r: r.level, reverse=True)

    async def is_at_least_on(self, subject: Any, role: RoleIdentifier, target: Any) -> bool:
        try:
            pivot = self._registry.resolve(role)
        except RoleNotFound:
            return False
        return any(r.is_at_least(pivot) for r in await self.get_roles_on(subject, target))

    # Listings --------------------------------------------------------------

    async def get_participants(self, target: Any) -> Participants:
        t = self._ref(target)

        async def load() -> tuple[AssignmentView, ...]:
            async with self._sessions() as session:
                rows = await AssignmentRepo(session).list_for_target(t)
            return tuple(AssignmentView.from_row(r) for r in rows)

        rows = await self._cache.remember(
            CacheKind.participants, self._cache.participants_key(t), load
        )
        return Participants(rows)

    async def get_participants_with_role(
        self, target: Any, role: RoleIdentifier
    ) -> list[IdentityRef]:
        role_d = self._registry.resolve(role)
        participants = await self.get_participants(target)
        return participants.with_keys(self._codec.accepted_keys(role_d)).subjects()

    async def get_assigned_targets(self, subject: Any, target_type: str) -> list[IdentityRef]:
        s = self._ref(subject)

        async def load() -> tuple[AssignmentView, ...]:
            async with self._sessions() as session:
                rows = await AssignmentRepo(session).list_for_subject(s, target_type)
            return tuple(AssignmentView.from_row(r) for r in rows)

        rows = await self._cache.remember(
            CacheKind.assigned_entities, self._cache.assigned_key(s, target_type), load
        )
        return self._scoped_targets(s, rows)

    async def get_assigned_targets_by_ids(
        self, subject: Any, target_type: str, ids: Iterable[Any]
    ) -> list[IdentityRef]:
        s = self._ref(subject)
        async with self._sessions() as session:
            rows = await AssignmentRepo(session).list_for_subject(
                s, target_type, target_ids=[str(i) for i in ids]
            )
        return self._scoped_targets(s, [AssignmentView.from_row(r) for r in rows])

    def _scoped_targets(
        self, subject: IdentityRef, rows: Iterable[AssignmentView]
    ) -> list[IdentityRef]:
        tenant = self._scope_tenant(subject)
        visible = (r for r in rows if tenant is None or r.tenant_key in (None, tenant))
        return list(dict.fromkeys(r.target.with_tenant(r.tenant_key) for r in visible))

    def _scope_tenant(self, subject: IdentityRef) -> str | None:
        mt = self._settings.multitenancy
        if mt.enabled and mt.auto_scope:
            return subject.tenant_key
        return None

    # Entity listings (planner) ---------------------------------------------

    async def participant_entities(
        self, target: Any, subject_type: str, role: RoleIdentifier | None = None
    ) -> list[Any]:
        return await self._planner.participants(
            self._ref(target), subject_type, role_keys=self._role_keys(role)
        )

    async def assigned_entities(
        self, subject: Any, target_type: str, role: RoleIdentifier | None = None
    ) -> list[Any]:
        s = self._ref(subject)
        return await self._planner.assigned_targets(
            s, target_type, role_keys=self._role_keys(role), tenant_key=self._scope_tenant(s)
        )

    async def entities_not_assigned_to(self, target: Any, subject_type: str) -> list[Any]:
        return await self._planner.not_assigned_to(self._ref(target), subject_type)

    # Cache maintenance -----------------------------------------------------

    async def clear_cache(self, target: Any, subject: Any | None = None) -> None:
        t = self._ref(target)
        if subject is None:
            await self._cache.invalidate_target(t)
            return
        keys = [k for role in self._registry for k in self._codec.accepted_keys(role)]
        await self._cache.invalidate_pair(self._ref(subject), t, keys)

    async def bulk_clear_cache(self, targets: Iterable[Any]) -> None:
        for target in targets:
            await self.clear_cache(target)

    # Helpers ---------------------------------------------------------------

    def identity(self, value: Any) -> IdentityRef:
        """Reference for an `IdentityRef`, a `SupportsIdentity` object or a mapped entity."""

        return self._entities.ref_for(value)

    _ref = identity

    def _role_keys(self, role: RoleIdentifier | None) -> tuple[str, ...] | None:
        if role is None:
            return None
        return self._codec.accepted_keys(self._registry.resolve(role))

    def _affected_keys(
        self, accepted: Iterable[str], rows: Iterable[AssignmentView]
    ) -> set[str]:
        # Role checks are cached under the canonical key; legacy rows are mapped onto it too.
        keys = set(accepted)
        for row in rows:
            keys.add(row.role_key)
            role = self._decode_or_none(row.role_key)
            if role is not None:
                keys.add(self._codec.encode(role))
        return keys

    def _decode_or_none(self, key: str) -> RoleDescriptor | None:
        try:
            return self._registry.decode_key(key)
        except (RoleNotFound, CodecError):
            log.warning("roster.role_key_undecodable", key_prefix=key[:12])
            return None


# --- Module Notes -----------------------------------------------------------
# Every public operation opens its own session and transaction from the roster store.
# Cache invalidation and event dispatch run after commit and before the call returns.
