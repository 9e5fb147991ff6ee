"""
access_roster.integrations.fastapi

FastAPI dependency functions for roster-based authorization.

Responsibilities:
- Expose the app's `AssignmentStore` as a dependency.
- Enforce "subject holds role on target" via reusable dependency factories.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN, HTTP_404_NOT_FOUND

from access_roster.identity import IdentityRef
from access_roster.roles.registry import RoleIdentifier
from access_roster.services.assignment_store import AssignmentStore


def install_roster(app: FastAPI, store: AssignmentStore) -> None:
    app.state.roster = store


def roster_from_app(request: Request) -> AssignmentStore:
    # Installed at startup with `install_roster`.
    return request.app.state.roster  # type: ignore[attr-defined]


def require_role_on(
    role: RoleIdentifier,
    *,
    subject: Callable[..., Any],
    target: Callable[..., Any],
    at_least: bool = False,
):
    """
    Build a dependency that admits the request only if `subject` holds `role` on `target`.

    `subject` and `target` are themselves dependencies returning identity references
    (or objects the store can turn into one); returning None means "absent".
    With `at_least=True` any role at or above `role` in the hierarchy is accepted.
    """

    async def _dep(
        subject_ref: Any = Depends(subject),
        target_ref: Any = Depends(target),
        store: AssignmentStore = Depends(roster_from_app),
    ) -> IdentityRef:
        if subject_ref is None:
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        if target_ref is None:
            raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Target not found")

        if at_least:
            allowed = await store.is_at_least_on(subject_ref, role, target_ref)
        else:
            allowed = await store.check(subject_ref, target_ref, role)
        if not allowed:
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")
        return store.identity(subject_ref)

    return _dep


# --- Module Notes -----------------------------------------------------------
# Routes typically combine these with their own auth dependency, e.g.
# `Depends(require_role_on("editor", subject=current_user, target=project_from_path))`.
