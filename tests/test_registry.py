"""
tests.test_registry

Role registry: registration validation, resolution and hierarchy.
"""

from __future__ import annotations

import itertools

import pytest

from access_roster.errors import RoleNotFound, RoleRegistrationError
from access_roster.roles import DEFAULT_ROLES, KeyCodec, RoleDescriptor, RoleRegistry
from access_roster.roles.descriptor import snake_case


def _registry(mode: str = "plain", roles=DEFAULT_ROLES) -> RoleRegistry:
    return RoleRegistry(roles, KeyCodec(mode, "s3cret"))


def test_resolves_names_and_plain_keys() -> None:
    registry = _registry()
    assert registry.resolve("admin").level == 6
    assert registry.resolve(registry.resolve("viewer")).name == "viewer"
    assert registry.exists("guest")
    assert not registry.exists("superuser")
    assert "editor" in registry
    assert len(registry) == 6
    assert set(registry.all()) == {"admin", "manager", "editor", "contributor", "viewer", "guest"}


def test_unknown_role_raises() -> None:
    with pytest.raises(RoleNotFound):
        _registry().resolve("superuser")
    with pytest.raises(RoleNotFound):
        _registry().resolve(RoleDescriptor("admin", 99))


@pytest.mark.parametrize("mode", ["hashed", "encrypted"])
def test_resolves_storage_keys(mode: str) -> None:
    registry = _registry(mode)
    key = registry.storage_key("editor")
    assert key != "editor"
    assert registry.resolve(key).name == "editor"


def test_garbage_storage_key_is_role_not_found() -> None:
    with pytest.raises(RoleNotFound):
        _registry("hashed").resolve("0" * 64)


@pytest.mark.parametrize(
    "roles, message",
    [
        ([RoleDescriptor("a", 1), RoleDescriptor("b", 1)], "share level"),
        ([RoleDescriptor("a", 1), RoleDescriptor("a", 2)], "duplicate role name"),
        ([RoleDescriptor("ProjectManager", 1), RoleDescriptor("project_manager", 2)], "share the key"),
        ([RoleDescriptor("a", 0)], "minimum is 1"),
    ],
)
def test_registration_conflicts_fail_fast(roles, message: str) -> None:
    with pytest.raises(RoleRegistrationError, match=message):
        _registry(roles=roles)


def test_snake_case_plain_keys() -> None:
    assert snake_case("ProjectManager") == "project_manager"
    assert snake_case("admin") == "admin"
    assert snake_case("Team Lead") == "team_lead"
    assert RoleDescriptor("HTTPAuditor", 3).plain_key == "http_auditor"


def test_hierarchy_is_total_and_at_least_reflexive() -> None:
    for a, b in itertools.permutations(DEFAULT_ROLES, 2):
        assert a.is_higher_than(b) != a.is_lower_than(b)
        assert not a.is_equal_to(b)
    for role in DEFAULT_ROLES:
        assert role.is_at_least(role)
        assert role.is_equal_to(role)
        assert role.is_lower_than_or_equal(role)


def test_hierarchy_listings() -> None:
    registry = _registry()
    assert [r.name for r in registry.higher_than("editor")] == ["admin", "manager"]
    assert [r.name for r in registry.at_least("manager")] == ["admin", "manager"]
    assert [r.name for r in registry.lower_than("viewer")] == ["guest"]
    assert [r.name for r in registry.at_most("viewer")] == ["viewer", "guest"]
    assert registry.options_up_to("viewer") == [("viewer", "Viewer"), ("guest", "Guest")]
