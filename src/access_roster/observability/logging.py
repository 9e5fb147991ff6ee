"""
access_roster.observability.logging

Structured logging configuration.

Responsibilities:
- Configure `structlog` for JSON logs when the host process asks for it.
- Render identity references as compact "Type:id" strings.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from access_roster.identity import IdentityRef


def configure_logging(*, service_name: str, level: str) -> None:
    """
    JSON logs with ISO timestamps and a stable `service` field.
    Library users that already configure structlog can skip this.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            render_identities,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def render_identities(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # Tenant keys stay out of the rendered form; log them as their own field when needed.
    for name, value in event_dict.items():
        if isinstance(value, IdentityRef):
            event_dict[name] = str(value)
    return event_dict


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Event names are dotted and grouped by component: "roster.assign.*" and "roster.roles_*"
# come from the store, "roster.cache.*" from the cache layer, "roster.event" from the
# dispatcher and "roster.planner.strategy" from the planner. Subject and target fields
# always read "Type:id".
