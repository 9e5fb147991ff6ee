"""
access_roster.roles.descriptor

Static role definitions and hierarchy comparisons.

Responsibilities:
- Describe a role (name, level, label, description) as an immutable value.
- Derive the snake_case plain key used by the plain storage mode.
- Compare roles by level without side effects.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_WORD = re.compile(r"[^a-z0-9]+")


def snake_case(name: str) -> str:
    # "ProjectManager" -> "project_manager", "Team Lead" -> "team_lead"
    spaced = _CAMEL_BOUNDARY.sub("_", name.strip())
    return _NON_WORD.sub("_", spaced.lower()).strip("_")


@dataclass(frozen=True, slots=True)
class RoleDescriptor:
    name: str
    level: int
    label: str = ""
    description: str = ""

    @property
    def plain_key(self) -> str:
        return snake_case(self.name)

    @property
    def display_label(self) -> str:
        return self.label or self.name.replace("_", " ").title()

    def is_higher_than(self, other: RoleDescriptor) -> bool:
        return self.level > other.level

    def is_higher_than_or_equal(self, other: RoleDescriptor) -> bool:
        return self.level >= other.level

    def is_lower_than(self, other: RoleDescriptor) -> bool:
        return self.level < other.level

    def is_lower_than_or_equal(self, other: RoleDescriptor) -> bool:
        return self.level <= other.level

    def is_equal_to(self, other: RoleDescriptor) -> bool:
        return self.level == other.level

    def is_at_least(self, other: RoleDescriptor) -> bool:
        return self.is_higher_than_or_equal(other)

    def __str__(self) -> str:
        return self.plain_key


# --- Module Notes -----------------------------------------------------------
# Descriptors are registered at startup (see `roles.registry`); nothing here touches storage.
