"""
tests.test_assignment_store

Assignment store behaviour: strategies, key storage, tenancy, events and caching.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from access_roster.cache import RedisCacheBackend
from access_roster.db.models import Assignment
from access_roster.db.repositories.assignments import AssignmentRepo
from access_roster.errors import (
    CodecError,
    DuplicateAssignmentConflict,
    MisconfiguredMultitenancy,
    RoleNotFound,
    TenantIntegrityViolation,
)
from access_roster.events import RoleAssigned, RoleChanged, RoleRemoved
from access_roster.identity import IdentityRef
from tests.conftest import GatedBackend, InMemoryRedis

USER = IdentityRef("User", 1)
OTHER_USER = IdentityRef("User", 2)
PROJECT = IdentityRef("Project", 1)


async def _rows(sessions) -> list[Assignment]:
    async with sessions() as session:
        return list((await session.execute(select(Assignment).order_by(Assignment.id))).scalars())


async def _count(sessions) -> int:
    async with sessions() as session:
        return (await session.execute(select(func.count(Assignment.id)))).scalar_one()


@pytest.mark.asyncio
async def test_replace_leaves_single_record(make_store, sessions) -> None:
    store = make_store(assignment_strategy="replace", key_storage="plain")
    assert await store.assign(USER, PROJECT, "admin")
    assert await store.assign(USER, PROJECT, "editor")

    rows = await _rows(sessions)
    assert len(rows) == 1
    assert store.registry.resolve(rows[0].role_key).name == "editor"
    assert (await store.get_role_on(USER, PROJECT)).name == "editor"


@pytest.mark.asyncio
async def test_hashed_mode_never_stores_plain_name(make_store, sessions) -> None:
    store = make_store(key_storage="hashed")
    await store.assign(USER, PROJECT, "admin")

    rows = await _rows(sessions)
    assert rows[0].role_key != "admin"
    assert (await store.get_role_on(USER, PROJECT)).name == "admin"


@pytest.mark.asyncio
async def test_encrypted_mode_round_trips(make_store, sessions) -> None:
    store = make_store(key_storage="encrypted")
    await store.assign(USER, PROJECT, "contributor")

    rows = await _rows(sessions)
    assert "contributor" not in rows[0].role_key
    assert await store.check(USER, PROJECT, "contributor")
    assert (await store.get_role_on(USER, PROJECT)).name == "contributor"


@pytest.mark.asyncio
@pytest.mark.parametrize("strategy", ["replace", "add"])
async def test_assign_is_idempotent(make_store, sessions, strategy: str) -> None:
    store = make_store(assignment_strategy=strategy)
    assert await store.assign(USER, PROJECT, "viewer") is True
    assert await store.assign(USER, PROJECT, "viewer") is False
    assert await _count(sessions) == 1


@pytest.mark.asyncio
async def test_add_strategy_keeps_multiple_roles(make_store, sessions) -> None:
    store = make_store(assignment_strategy="add")
    await store.assign(USER, PROJECT, "viewer")
    await store.assign(USER, PROJECT, "editor")

    assert await _count(sessions) == 2
    assert [r.name for r in await store.get_roles_on(USER, PROJECT)] == ["editor", "viewer"]
    assert (await store.get_role_on(USER, PROJECT)).name == "viewer"
    assert await store.is_at_least_on(USER, "contributor", PROJECT)
    assert not await store.is_at_least_on(USER, "manager", PROJECT)


@pytest.mark.asyncio
async def test_replace_exclusivity_over_sequences(make_store, sessions) -> None:
    store = make_store(assignment_strategy="replace")
    for role in ["guest", "admin", "admin", "viewer", "manager", "guest"]:
        await store.assign(USER, PROJECT, role)
        assert await _count(sessions) == 1
    assert (await store.get_role_on(USER, PROJECT)).name == "guest"


@pytest.mark.asyncio
async def test_unknown_role(make_store) -> None:
    store = make_store()
    with pytest.raises(RoleNotFound):
        await store.assign(USER, PROJECT, "superuser")
    assert await store.check(USER, PROJECT, "superuser") is False
    assert await store.is_at_least_on(USER, "superuser", PROJECT) is False


@pytest.mark.asyncio
async def test_checks_and_queries(make_store) -> None:
    store = make_store()
    assert await store.get_role_on(USER, PROJECT) is None
    assert not await store.has_any_role_on(USER, PROJECT)

    await store.assign(USER, PROJECT, "editor")
    assert await store.has_role_on(USER, PROJECT, "editor")
    assert not await store.check(USER, PROJECT, "admin")
    assert await store.has_any_role_on(USER, PROJECT)
    assert not await store.has_any_role_on(OTHER_USER, PROJECT)


@pytest.mark.asyncio
async def test_malformed_identity_raises(make_store) -> None:
    store = make_store()
    with pytest.raises(ValueError):
        await store.check(object(), PROJECT, "admin")


@pytest.mark.asyncio
async def test_change_role_on_existing_pair(make_store, sessions) -> None:
    store = make_store(assignment_strategy="add")
    events = []
    store.events.subscribe(RoleChanged, events.append)

    await store.assign(USER, PROJECT, "viewer")
    await store.assign(USER, PROJECT, "guest")
    assert await store.change_role_on(USER, PROJECT, "manager")

    rows = await _rows(sessions)
    assert len(rows) == 1
    assert (await store.get_role_on(USER, PROJECT)).name == "manager"
    assert events[0].old_role.name == "viewer"
    assert events[0].new_role.name == "manager"
    assert await store.change_role_on(USER, PROJECT, "manager") is False


@pytest.mark.asyncio
async def test_change_role_on_new_pair_assigns(make_store) -> None:
    store = make_store()
    assigned = []
    store.events.subscribe(RoleAssigned, assigned.append)

    assert await store.change_role_on(USER, PROJECT, "editor")
    assert (await store.get_role_on(USER, PROJECT)).name == "editor"
    assert len(assigned) == 1


@pytest.mark.asyncio
async def test_remove_is_idempotent(make_store, sessions) -> None:
    store = make_store(assignment_strategy="add")
    removed = []
    store.events.subscribe(RoleRemoved, removed.append)

    await store.assign(USER, PROJECT, "viewer")
    await store.assign(USER, PROJECT, "editor")
    assert await store.remove(USER, PROJECT) == 2
    assert await store.remove(USER, PROJECT) == 0
    assert await _count(sessions) == 0
    assert {e.role.name for e in removed} == {"viewer", "editor"}


@pytest.mark.asyncio
async def test_events_for_replace(make_store) -> None:
    store = make_store(assignment_strategy="replace")
    seen = []
    for event_type in (RoleAssigned, RoleRemoved, RoleChanged):
        store.events.subscribe(event_type, seen.append)

    await store.assign(USER, PROJECT, "admin")
    await store.assign(USER, PROJECT, "editor")

    assert [type(e).__name__ for e in seen] == ["RoleAssigned", "RoleRemoved", "RoleAssigned"]
    assert seen[1].role.name == "admin"
    assert seen[2].role.name == "editor"


@pytest.mark.asyncio
async def test_participants_and_assigned_targets(make_store) -> None:
    store = make_store(assignment_strategy="add")
    other_project = IdentityRef("Project", 2)
    await store.assign(USER, PROJECT, "admin")
    await store.assign(USER, PROJECT, "viewer")
    await store.assign(OTHER_USER, PROJECT, "viewer")
    await store.assign(USER, other_project, "guest")

    participants = await store.get_participants(PROJECT)
    assert participants.subjects() == [USER, OTHER_USER]
    assert participants.ids("User") == ["1", "2"]
    assert participants.exclude(USER).subjects() == [OTHER_USER]
    assert len(participants) == 2
    assert OTHER_USER in participants

    assert await store.get_participants_with_role(PROJECT, "viewer") == [USER, OTHER_USER]
    assert await store.get_participants_with_role(PROJECT, "admin") == [USER]
    assert await store.get_assigned_targets(USER, "Project") == [PROJECT, other_project]
    assert await store.get_assigned_targets(USER, "Organization") == []
    assert await store.get_assigned_targets_by_ids(USER, "Project", [2, 3]) == [other_project]


@pytest.mark.asyncio
async def test_duplicate_race_is_translated(make_store, monkeypatch) -> None:
    store = make_store(assignment_strategy="add", duplicate_policy="raise")
    await store.assign(USER, PROJECT, "viewer")

    # Simulate a racing writer: the pre-check sees nothing, the insert hits the constraint.
    async def _stale(self, subject, target, *, for_update=False):
        return []

    monkeypatch.setattr(AssignmentRepo, "list_for_pair", _stale)
    with pytest.raises(DuplicateAssignmentConflict):
        await store.assign(USER, PROJECT, "viewer")

    ignoring = make_store(assignment_strategy="add", duplicate_policy="ignore")
    assert await ignoring.assign(USER, PROJECT, "viewer") is False


@pytest.mark.asyncio
async def test_duplicate_race_keeps_transaction_usable(make_store, sessions, monkeypatch) -> None:
    store = make_store(assignment_strategy="add")
    await store.assign(USER, PROJECT, "viewer")

    async def _stale(self, subject, target, *, for_update=False):
        return []

    monkeypatch.setattr(AssignmentRepo, "list_for_pair", _stale)
    assert await store.assign(USER, PROJECT, "viewer") is False
    monkeypatch.undo()
    assert await _count(sessions) == 1
    assert await store.check(USER, PROJECT, "viewer")


# Caching ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_invalidation_completes_before_return(make_store) -> None:
    store = make_store(assignment_strategy="replace")
    await store.assign(USER, PROJECT, "admin")
    assert await store.check(USER, PROJECT, "admin")
    assert not await store.check(USER, PROJECT, "editor")
    assert await store.get_participants_with_role(PROJECT, "admin") == [USER]
    assert await store.get_assigned_targets(USER, "Project") == [PROJECT]

    await store.change_role_on(USER, PROJECT, "editor")
    assert not await store.check(USER, PROJECT, "admin")
    assert await store.check(USER, PROJECT, "editor")
    assert await store.get_participants_with_role(PROJECT, "admin") == []

    await store.remove(USER, PROJECT)
    assert not await store.check(USER, PROJECT, "editor")
    assert len(await store.get_participants(PROJECT)) == 0
    assert await store.get_assigned_targets(USER, "Project") == []


@pytest.mark.asyncio
async def test_cache_transparency(make_store) -> None:
    cached = make_store(assignment_strategy="add")
    uncached = make_store(assignment_strategy="add", cache={"enabled": False})

    async def observe(store) -> tuple:
        return (
            await store.check(USER, PROJECT, "viewer"),
            await store.check(USER, PROJECT, "admin"),
            tuple(await store.get_participants(PROJECT)),
            tuple(await store.get_assigned_targets(USER, "Project")),
        )

    assert await observe(cached) == await observe(uncached)
    await cached.assign(USER, PROJECT, "viewer")
    await cached.assign(OTHER_USER, PROJECT, "admin")
    assert await observe(cached) == await observe(uncached)
    await cached.remove(OTHER_USER, PROJECT)
    await cached.assign(USER, PROJECT, "admin")
    assert await observe(cached) == await observe(uncached)


@pytest.mark.asyncio
async def test_clear_cache_helpers(make_store) -> None:
    writer = make_store()
    reader = make_store()
    await reader.check(USER, PROJECT, "viewer")
    await reader.get_participants(PROJECT)

    # Separate in-process caches: writes through another store do not reach this reader.
    await writer.assign(USER, PROJECT, "viewer")
    assert not await reader.check(USER, PROJECT, "viewer")

    await reader.clear_cache(PROJECT, USER)
    assert await reader.check(USER, PROJECT, "viewer")

    await writer.assign(OTHER_USER, PROJECT, "viewer")
    await reader.bulk_clear_cache([PROJECT])
    assert len(await reader.get_participants(PROJECT)) == 2


@pytest.mark.asyncio
async def test_stores_sharing_redis_see_each_others_writes(make_store) -> None:
    shared = RedisCacheBackend(InMemoryRedis())
    writer = make_store(cache_backend=shared)
    reader = make_store(cache_backend=shared)
    assert not await reader.check(USER, PROJECT, "viewer")
    assert len(await reader.get_participants(PROJECT)) == 0

    await writer.assign(USER, PROJECT, "viewer")
    assert await reader.check(USER, PROJECT, "viewer")
    assert len(await reader.get_participants(PROJECT)) == 1


@pytest.mark.asyncio
async def test_check_racing_assign_leaves_no_stale_entry(make_store) -> None:
    backend = GatedBackend()
    store = make_store(cache_backend=backend)

    backend.armed = True
    pending = asyncio.create_task(store.check(USER, PROJECT, "admin"))
    # The check has loaded False and is writing it back when the assignment commits.
    await backend.entered.wait()
    assert await store.assign(USER, PROJECT, "admin")
    backend.release.set()

    assert await pending is False
    assert await store.check(USER, PROJECT, "admin") is True


# Multitenancy -------------------------------------------------------------


@pytest.mark.asyncio
async def test_cross_tenant_assignment_fails(make_store) -> None:
    store = make_store(multitenancy={"enabled": True})
    with pytest.raises(TenantIntegrityViolation):
        await store.assign(IdentityRef("User", 1, "A"), IdentityRef("Project", 1, "B"), "admin")
    with pytest.raises(TenantIntegrityViolation):
        await store.assign(IdentityRef("User", 1), IdentityRef("Project", 1, "B"), "admin")


@pytest.mark.asyncio
async def test_tenant_key_persisted_and_drift_tolerated(make_store, sessions) -> None:
    store = make_store(multitenancy={"enabled": True})
    await store.assign(IdentityRef("User", 1, "A"), IdentityRef("Project", 1, "A"), "viewer")
    assert (await _rows(sessions))[0].tenant_key == "A"

    # The user has since moved to tenant B; the established pair keeps working.
    drifted = IdentityRef("User", 1, "B")
    assert await store.change_role_on(drifted, IdentityRef("Project", 1, "A"), "editor")
    assert await store.assign(drifted, IdentityRef("Project", 1, "A"), "manager")
    rows = await _rows(sessions)
    assert [r.tenant_key for r in rows] == ["A"]


@pytest.mark.asyncio
async def test_organization_is_its_own_tenant(make_store, seeded) -> None:
    store = make_store(multitenancy={"enabled": True})
    user = seeded["users"][0]
    acme, globex = seeded["organizations"]
    assert await store.assign(user, acme, "admin")
    with pytest.raises(TenantIntegrityViolation):
        await store.assign(user, globex, "admin")


@pytest.mark.asyncio
async def test_auto_scope_filters_subject_listings(make_store) -> None:
    store = make_store(multitenancy={"enabled": True, "auto_scope": True})
    in_a = IdentityRef("Project", 1, "A")
    in_b = IdentityRef("Project", 2, "B")
    shared = IdentityRef("Project", 3)
    await store.assign(IdentityRef("User", 1, "A"), in_a, "viewer")
    await store.assign(IdentityRef("User", 1, "B"), in_b, "viewer")
    await store.assign(IdentityRef("User", 1), shared, "viewer")

    assert await store.get_assigned_targets(IdentityRef("User", 1, "A"), "Project") == [in_a, shared]
    assert await store.get_assigned_targets(IdentityRef("User", 1, "B"), "Project") == [in_b, shared]

    unscoped = make_store(multitenancy={"enabled": True, "auto_scope": False})
    assert len(await unscoped.get_assigned_targets(IdentityRef("User", 1, "A"), "Project")) == 3


@pytest.mark.asyncio
async def test_destroy_tenant_roles(make_store, sessions) -> None:
    store = make_store(multitenancy={"enabled": True})
    assert await store.destroy_tenant_roles("A") == 0

    await store.assign(IdentityRef("User", 1, "A"), IdentityRef("Project", 1, "A"), "viewer")
    await store.assign(IdentityRef("User", 2, "A"), IdentityRef("Project", 1, "A"), "admin")
    await store.assign(IdentityRef("User", 3, "B"), IdentityRef("Project", 2, "B"), "admin")
    assert await store.check(USER, PROJECT, "viewer")

    assert await store.destroy_tenant_roles("A") == 2
    assert await _count(sessions) == 1
    assert not await store.check(USER, PROJECT, "viewer")


@pytest.mark.asyncio
async def test_destroy_tenant_roles_requires_multitenancy(make_store) -> None:
    with pytest.raises(MisconfiguredMultitenancy):
        await make_store().destroy_tenant_roles("A")


# Key storage migration ----------------------------------------------------


@pytest.mark.asyncio
async def test_legacy_plain_keys_under_encrypted_mode(make_store, sessions) -> None:
    await make_store(key_storage="plain").assign(USER, PROJECT, "editor")

    strict = make_store(key_storage="encrypted")
    assert not await strict.check(USER, PROJECT, "editor")
    with pytest.raises(CodecError):
        await strict.get_role_on(USER, PROJECT)

    lenient = make_store(key_storage="encrypted", allow_plain_key_fallback=True)
    assert await lenient.check(USER, PROJECT, "editor")
    assert (await lenient.get_role_on(USER, PROJECT)).name == "editor"

    # Re-assigning under replace rewrites the legacy row with the encrypted key.
    assert await lenient.assign(USER, PROJECT, "admin")
    rows = await _rows(sessions)
    assert len(rows) == 1 and rows[0].role_key != "admin"
