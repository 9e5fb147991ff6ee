"""
access_roster.roles

Role definitions, storage-key codec and the registry tying them together.
"""

from access_roster.roles.codec import KeyCodec, KeyStorage
from access_roster.roles.defaults import DEFAULT_ROLES
from access_roster.roles.descriptor import RoleDescriptor
from access_roster.roles.registry import RoleRegistry

__all__ = ["DEFAULT_ROLES", "KeyCodec", "KeyStorage", "RoleDescriptor", "RoleRegistry"]
