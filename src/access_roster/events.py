"""
access_roster.events

Domain events emitted after roster writes commit.

Responsibilities:
- Define immutable event payloads for assignment, change and removal.
- Dispatch events synchronously to subscribed handlers.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from access_roster.identity import IdentityRef
from access_roster.observability.logging import get_logger
from access_roster.roles.descriptor import RoleDescriptor

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RoleAssigned:
    subject: IdentityRef
    target: IdentityRef
    role: RoleDescriptor


@dataclass(frozen=True, slots=True)
class RoleChanged:
    subject: IdentityRef
    target: IdentityRef
    old_role: RoleDescriptor | None
    new_role: RoleDescriptor


@dataclass(frozen=True, slots=True)
class RoleRemoved:
    subject: IdentityRef
    target: IdentityRef
    # None when the persisted key no longer decodes to a registered role.
    role: RoleDescriptor | None = None


RosterEvent = RoleAssigned | RoleChanged | RoleRemoved
Handler = Callable[[RosterEvent], None]


class EventDispatcher:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def dispatch(self, event: RosterEvent) -> None:
        log.debug(
            "roster.event",
            event_type=type(event).__name__,
            subject=event.subject,
            target=event.target,
        )
        for handler in list(self._handlers.get(type(event), ())):
            handler(event)
