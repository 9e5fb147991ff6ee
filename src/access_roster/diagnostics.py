"""
access_roster.diagnostics

Health check ("doctor") for a roster installation.

Responsibilities:
- Verify the roster table and its required columns exist.
- Verify a role set is registered.
- Verify every stored role key decodes under the active key storage mode.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from access_roster.db.models import REQUIRED_COLUMNS, ROSTER_TABLE
from access_roster.db.repositories.assignments import AssignmentRepo
from access_roster.errors import CodecError, RoleNotFound
from access_roster.observability.logging import get_logger
from access_roster.roles.codec import KeyStorage
from access_roster.roles.registry import RoleRegistry
from access_roster.settings import Settings

log = get_logger(__name__)


@dataclass
class DoctorReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


async def run_doctor(
    *,
    sessions: async_sessionmaker[AsyncSession],
    registry: RoleRegistry,
    settings: Settings | None = None,
) -> DoctorReport:
    report = DoctorReport()

    if len(registry) == 0:
        report.errors.append("no roles are registered")

    async with sessions() as session:
        conn = await session.connection()
        columns = await conn.run_sync(_table_columns)
        if columns is None:
            report.errors.append(f"required table {ROSTER_TABLE!r} not found")
            report.suggestions.append("run the Alembic migrations (alembic upgrade head)")
            _log_report(report)
            return report

        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            report.errors.append(f"missing columns in {ROSTER_TABLE!r}: {', '.join(missing)}")
            _log_report(report)
            return report

        key_counts = await AssignmentRepo(session).role_key_counts()

    _check_keys(report, registry, key_counts)
    if settings is not None and settings.key_storage == "plain":
        report.suggestions.append("consider hashed or encrypted key storage in production")
    _log_report(report)
    return report


def _table_columns(sync_conn) -> set[str] | None:
    inspector = inspect(sync_conn)
    if not inspector.has_table(ROSTER_TABLE):
        return None
    return {col["name"] for col in inspector.get_columns(ROSTER_TABLE)}


def _check_keys(
    report: DoctorReport, registry: RoleRegistry, key_counts: list[tuple[str, int]]
) -> None:
    mode = registry.codec.mode
    plain_keys = {role.plain_key for role in registry}
    for key, count in key_counts:
        if mode is not KeyStorage.plain and key in plain_keys:
            report.warnings.append(
                f"{count} row(s) store the plain key {key!r} under {mode} key storage"
            )
            if mode is KeyStorage.encrypted and not registry.codec.allow_plain_fallback:
                report.suggestions.append(
                    "re-encode legacy rows or enable allow_plain_key_fallback while migrating"
                )
            continue
        try:
            registry.decode_key(key)
        except (CodecError, RoleNotFound) as exc:
            report.errors.append(f"{count} row(s) hold an undecodable role key: {exc}")


def _log_report(report: DoctorReport) -> None:
    log.info(
        "roster.doctor",
        ok=report.ok,
        errors=len(report.errors),
        warnings=len(report.warnings),
    )


# --- Module Notes -----------------------------------------------------------
# Errors mean the engine will fail at runtime; warnings are migration leftovers.
