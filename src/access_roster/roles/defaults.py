"""
access_roster.roles.defaults

Default role set shipped with the engine.
"""

from __future__ import annotations

from access_roster.roles.descriptor import RoleDescriptor

ADMIN = RoleDescriptor(
    "admin", 6, "Administrator", "Full system access with all administrative privileges"
)
MANAGER = RoleDescriptor(
    "manager", 5, "Manager", "Manages teams and resources with elevated permissions"
)
EDITOR = RoleDescriptor(
    "editor", 4, "Editor", "Creates and modifies content with publishing capabilities"
)
CONTRIBUTOR = RoleDescriptor(
    "contributor", 3, "Contributor", "Contributes content and collaborates on projects"
)
VIEWER = RoleDescriptor("viewer", 2, "Viewer", "Read-only access to view content and resources")
GUEST = RoleDescriptor("guest", 1, "Guest", "Limited access for temporary or anonymous users")

DEFAULT_ROLES: tuple[RoleDescriptor, ...] = (ADMIN, MANAGER, EDITOR, CONTRIBUTOR, VIEWER, GUEST)
