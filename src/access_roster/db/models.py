"""
access_roster.db.models

Persistence schema for role assignments.

Responsibilities:
- Define the `roster` table: one row per (subject, target, role key).
- Enforce assignment uniqueness at the database level.
- Provide the indexes used by listing and tenant-scoped queries.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from access_roster.db.base import Base

ROSTER_TABLE = "roster"
UNIQUE_ASSIGNMENT = "uq_roster_assignment"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class Assignment(Base):
    __tablename__ = ROSTER_TABLE

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    subject_type: Mapped[str] = mapped_column(String(255), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_type: Mapped[str] = mapped_column(String(255), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Codec output (plain key, HMAC digest or ciphertext), never trusted as a plain name.
    role_key: Mapped[str] = mapped_column(String(512), nullable=False)
    tenant_key: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "subject_type",
            "subject_id",
            "target_type",
            "target_id",
            "role_key",
            name=UNIQUE_ASSIGNMENT,
        ),
        Index("ix_roster_subject", "subject_type", "subject_id"),
        Index("ix_roster_target", "target_type", "target_id"),
        Index("ix_roster_role_key", "role_key"),
        Index("ix_roster_tenant", "tenant_key"),
        Index("ix_roster_tenant_subject", "tenant_key", "subject_type", "subject_id"),
    )

    def __repr__(self) -> str:
        return (
            f"Assignment(id={self.id!r}, subject={self.subject_type}:{self.subject_id}, "
            f"target={self.target_type}:{self.target_id}, tenant={self.tenant_key!r})"
        )


REQUIRED_COLUMNS: tuple[str, ...] = tuple(c.name for c in Assignment.__table__.columns)


# --- Module Notes -----------------------------------------------------------
# Keep this table in sync with `alembic/versions`; the doctor check compares the live
# table against REQUIRED_COLUMNS.
