"""
access_roster.roles.registry

Startup-time role registry.

Responsibilities:
- Validate the registered role set once (unique names, plain keys and levels).
- Resolve role identifiers: descriptors, names, plain keys and persisted storage keys.
- Provide hierarchy-ordered listings.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from access_roster.errors import CodecError, RoleNotFound, RoleRegistrationError
from access_roster.roles.codec import KeyCodec
from access_roster.roles.descriptor import RoleDescriptor

RoleIdentifier = RoleDescriptor | str


class RoleRegistry:
    def __init__(self, roles: Iterable[RoleDescriptor], codec: KeyCodec) -> None:
        self.codec = codec
        by_name: dict[str, RoleDescriptor] = {}
        by_plain: dict[str, RoleDescriptor] = {}
        by_level: dict[int, RoleDescriptor] = {}

        for role in roles:
            if not role.name:
                raise RoleRegistrationError("role name must not be empty")
            if role.level < 1:
                raise RoleRegistrationError(
                    f"role {role.name!r} has level {role.level}; minimum is 1"
                )
            if role.name in by_name:
                raise RoleRegistrationError(f"duplicate role name {role.name!r}")
            if role.plain_key in by_plain:
                raise RoleRegistrationError(
                    f"roles {by_plain[role.plain_key].name!r} and {role.name!r} "
                    f"share the key {role.plain_key!r}"
                )
            if role.level in by_level:
                raise RoleRegistrationError(
                    f"roles {by_level[role.level].name!r} and {role.name!r} "
                    f"share level {role.level}"
                )
            by_name[role.name] = role
            by_plain[role.plain_key] = role
            by_level[role.level] = role

        # Highest level first.
        self._ordered = tuple(sorted(by_name.values(), key=lambda r: r.level, reverse=True))
        self._by_name = by_name
        self._by_plain = by_plain

    # Resolution ------------------------------------------------------------

    def resolve(self, identifier: RoleIdentifier) -> RoleDescriptor:
        if isinstance(identifier, RoleDescriptor):
            registered = self._by_name.get(identifier.name)
            if registered != identifier:
                raise RoleNotFound(identifier.name)
            return registered
        if not isinstance(identifier, str) or not identifier:
            raise RoleNotFound(identifier)

        role = self._by_name.get(identifier) or self._by_plain.get(identifier)
        if role is not None:
            return role
        try:
            return self.codec.decode(identifier, self._ordered)
        except CodecError as exc:
            raise RoleNotFound(identifier) from exc

    def decode_key(self, key: str) -> RoleDescriptor:
        """Decode a persisted key; unlike `resolve`, codec failures surface as `CodecError`."""

        return self.codec.decode(key, self._ordered)

    def exists(self, identifier: RoleIdentifier) -> bool:
        try:
            self.resolve(identifier)
        except RoleNotFound:
            return False
        return True

    def storage_key(self, identifier: RoleIdentifier) -> str:
        return self.codec.encode(self.resolve(identifier))

    def all(self) -> Mapping[str, RoleDescriptor]:
        return MappingProxyType(self._by_name)

    def __iter__(self) -> Iterator[RoleDescriptor]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, RoleDescriptor | str) and self.exists(identifier)

    # Hierarchy listings ----------------------------------------------------

    def higher_than(self, identifier: RoleIdentifier) -> list[RoleDescriptor]:
        pivot = self.resolve(identifier)
        return [r for r in self._ordered if r.is_higher_than(pivot)]

    def at_least(self, identifier: RoleIdentifier) -> list[RoleDescriptor]:
        pivot = self.resolve(identifier)
        return [r for r in self._ordered if r.is_at_least(pivot)]

    def lower_than(self, identifier: RoleIdentifier) -> list[RoleDescriptor]:
        pivot = self.resolve(identifier)
        return [r for r in self._ordered if r.is_lower_than(pivot)]

    def at_most(self, identifier: RoleIdentifier) -> list[RoleDescriptor]:
        pivot = self.resolve(identifier)
        return [r for r in self._ordered if r.is_lower_than_or_equal(pivot)]

    def options_up_to(self, identifier: RoleIdentifier) -> list[tuple[str, str]]:
        # (plain_key, label) pairs a user holding `identifier` may hand out.
        return [(r.plain_key, r.display_label) for r in self.at_most(identifier)]


# --- Module Notes -----------------------------------------------------------
# Registration is explicit: callers pass the descriptor list at startup (see
# `roles.defaults.DEFAULT_ROLES`). There is no discovery of role definitions.
