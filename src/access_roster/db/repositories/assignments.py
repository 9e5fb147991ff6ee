"""
access_roster.db.repositories.assignments

Repository for `Assignment` rows.

Responsibilities:
- Query roster rows by pair, target, subject and tenant.
- Insert and delete rows without committing (the service owns the transaction).
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import UTC, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from access_roster.db.models import Assignment
from access_roster.identity import IdentityRef


def _pair_filter(subject: IdentityRef, target: IdentityRef) -> tuple:
    return (
        Assignment.subject_type == subject.type_tag,
        Assignment.subject_id == subject.id,
        Assignment.target_type == target.type_tag,
        Assignment.target_id == target.id,
    )


class AssignmentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_pair(
        self, subject: IdentityRef, target: IdentityRef, *, for_update: bool = False
    ) -> list[Assignment]:
        stmt = select(Assignment).where(*_pair_filter(subject, target)).order_by(Assignment.id)
        if for_update:
            # Ignored by SQLite; row locks on backends that support them.
            stmt = stmt.with_for_update()
        return list((await self._session.execute(stmt)).scalars())

    async def exists(
        self,
        subject: IdentityRef,
        target: IdentityRef,
        role_keys: Collection[str] | None = None,
    ) -> bool:
        stmt = select(Assignment.id).where(*_pair_filter(subject, target))
        if role_keys is not None:
            stmt = stmt.where(Assignment.role_key.in_(list(role_keys)))
        return (await self._session.execute(stmt.limit(1))).first() is not None

    async def add(
        self,
        *,
        subject: IdentityRef,
        target: IdentityRef,
        role_key: str,
        tenant_key: str | None,
    ) -> Assignment:
        row = Assignment(
            subject_type=subject.type_tag,
            subject_id=subject.id,
            target_type=target.type_tag,
            target_id=target.id,
            role_key=role_key,
            tenant_key=tenant_key,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def set_role_key(self, row: Assignment, role_key: str) -> None:
        row.role_key = role_key
        row.updated_at = datetime.now(tz=UTC)
        await self._session.flush()

    async def delete_ids(self, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        result = await self._session.execute(delete(Assignment).where(Assignment.id.in_(list(ids))))
        return result.rowcount or 0

    async def list_for_target(
        self, target: IdentityRef, *, role_keys: Collection[str] | None = None
    ) -> list[Assignment]:
        stmt = select(Assignment).where(
            Assignment.target_type == target.type_tag,
            Assignment.target_id == target.id,
        )
        if role_keys is not None:
            stmt = stmt.where(Assignment.role_key.in_(list(role_keys)))
        return list((await self._session.execute(stmt.order_by(Assignment.id))).scalars())

    async def list_for_subject(
        self,
        subject: IdentityRef,
        target_type: str,
        *,
        target_ids: Collection[str] | None = None,
        role_keys: Collection[str] | None = None,
    ) -> list[Assignment]:
        stmt = select(Assignment).where(
            Assignment.subject_type == subject.type_tag,
            Assignment.subject_id == subject.id,
            Assignment.target_type == target_type,
        )
        if target_ids is not None:
            stmt = stmt.where(Assignment.target_id.in_([str(i) for i in target_ids]))
        if role_keys is not None:
            stmt = stmt.where(Assignment.role_key.in_(list(role_keys)))
        return list((await self._session.execute(stmt.order_by(Assignment.id))).scalars())

    async def list_for_tenant(self, tenant_key: str) -> list[Assignment]:
        stmt = select(Assignment).where(Assignment.tenant_key == tenant_key).order_by(Assignment.id)
        return list((await self._session.execute(stmt)).scalars())

    async def role_key_counts(self) -> list[tuple[str, int]]:
        stmt = (
            select(Assignment.role_key, func.count(Assignment.id))
            .group_by(Assignment.role_key)
            .order_by(Assignment.role_key)
        )
        return [(key, count) for key, count in (await self._session.execute(stmt)).all()]


# --- Module Notes -----------------------------------------------------------
# Cross-store listings (joining entity tables) live in `access_roster.planner`; this repo
# only ever touches the roster table.
