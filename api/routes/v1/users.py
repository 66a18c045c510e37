"""
api/routes/v1/users.py -- Account administration REST endpoints.

Routes (all admin only):
  POST   /api/v1/users                    -- create account
  GET    /api/v1/users                    -- list all accounts (inactive included)
  GET    /api/v1/users/{id}               -- one account, any state
  PATCH  /api/v1/users/{id}               -- rename / change role / (de)activate
  PUT    /api/v1/users/{id}/password      -- reset password
  DELETE /api/v1/users/{id}?confirm=NAME  -- irreversible hard delete

Guards:
  - An admin cannot deactivate, demote or delete their own account.
  - The last active admin cannot be deactivated, demoted or deleted.
  - Hard delete requires ?confirm= to repeat the target's username exactly.
    Deactivation (PATCH is_active=false) is the normal removal path.

Role changes do not touch tokens already issued: a demoted user keeps the
old role until their token expires. The audit line says so.

In bypass mode (enforcement disabled) identity is None and the self-checks
are skipped; the last-admin checks still apply.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import PasswordReset, UserCreate, UserPatch, UserResponse
from auth.dependencies import require_admin
from auth.errors import DuplicateUsername, NotFound
from auth.models import AccountView, Identity, Role
from auth.passwords import PasswordHasher, assess_strength
from auth.store import UserStore

audit = logging.getLogger("authgate.audit")

router = APIRouter()


def _actor(identity: Identity | None) -> str:
    return identity.username if identity is not None else "anonymous (auth disabled)"


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _conflict() -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "conflict", "message": "A user with that username already exists."},
    )


def _weak_password(violations: list[str]) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "weak_password", "message": "Password does not meet policy.", "detail": violations},
    )


def _is_last_active_admin(user_store: UserStore, target: AccountView) -> bool:
    return target.role == Role.admin and target.is_active and user_store.count_active_admins() <= 1


def _get_target(user_store: UserStore, user_id: int) -> AccountView:
    target = user_store.get_account_any_state(user_id)
    if target is None:
        raise _not_found()
    return target


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    identity: Identity | None = Depends(require_admin),
) -> UserResponse:
    """Create a new account. The password must satisfy the strength policy."""
    user_store: UserStore = request.app.state.user_store
    hasher: PasswordHasher = request.app.state.hasher

    report = assess_strength(body.password)
    if not report.valid:
        raise _weak_password(report.violations)

    try:
        user_id = user_store.create_account(body.username, hasher.hash(body.password), body.role)
    except DuplicateUsername as exc:
        raise _conflict() from exc

    audit.info("USER created id=%s username=%r role=%s by %s", user_id, body.username, body.role.value, _actor(identity))
    return UserResponse.from_view(_get_target(user_store, user_id))


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, identity: Identity | None = Depends(require_admin)) -> list[UserResponse]:
    """List every account, newest first, including deactivated ones."""
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_view(v) for v in user_store.list_all()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, identity: Identity | None = Depends(require_admin)) -> UserResponse:
    return UserResponse.from_view(_get_target(request.app.state.user_store, user_id))


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    identity: Identity | None = Depends(require_admin),
) -> UserResponse:
    """Rename, change role, or (de)activate an account."""
    user_store: UserStore = request.app.state.user_store
    target = _get_target(user_store, user_id)

    if body.username is None and body.role is None and body.is_active is None:
        raise HTTPException(status_code=400, detail={"code": "no_changes", "message": "No fields to update."})

    removes_admin = (body.is_active is False) or (body.role is not None and body.role != Role.admin)
    if removes_admin:
        if identity is not None and target.id == identity.user_id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_lockout", "message": "You cannot deactivate or demote your own account."},
            )
        if _is_last_active_admin(user_store, target):
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
            )

    try:
        updated = user_store.update_fields(user_id, username=body.username, role=body.role, is_active=body.is_active)
    except NotFound as exc:
        raise _not_found() from exc
    except DuplicateUsername as exc:
        raise _conflict() from exc

    audit.info(
        "USER updated id=%s changes=%s by %s",
        user_id,
        body.model_dump(exclude_none=True, mode="json"),
        _actor(identity),
    )
    if body.role is not None and body.role != target.role:
        audit.warning(
            "USER id=%s role %s -> %s; tokens already issued keep the old role until they expire",
            user_id,
            target.role.value,
            body.role.value,
        )
    return UserResponse.from_view(updated)


@router.put("/users/{user_id}/password", status_code=204)
def reset_password(
    request: Request,
    user_id: int,
    body: PasswordReset,
    identity: Identity | None = Depends(require_admin),
) -> Response:
    """Set a new password for any account."""
    user_store: UserStore = request.app.state.user_store
    hasher: PasswordHasher = request.app.state.hasher

    report = assess_strength(body.new_password)
    if not report.valid:
        raise _weak_password(report.violations)

    try:
        user_store.set_password(user_id, hasher.hash(body.new_password))
    except NotFound as exc:
        raise _not_found() from exc
    audit.info("PASSWORD reset for id=%s by %s", user_id, _actor(identity))
    return Response(status_code=204)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    confirm: str = Query(default="", description="Must equal the target account's username."),
    identity: Identity | None = Depends(require_admin),
) -> Response:
    """Permanently delete an account. Irreversible -- prefer deactivation."""
    user_store: UserStore = request.app.state.user_store
    target = _get_target(user_store, user_id)

    if confirm != target.username:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "confirmation_required",
                "message": "Hard delete is irreversible. Repeat the username in ?confirm= to proceed.",
            },
        )
    if identity is not None and target.id == identity.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_lockout", "message": "You cannot delete your own account."},
        )
    if _is_last_active_admin(user_store, target):
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
        )

    try:
        user_store.delete_hard(user_id)
    except NotFound as exc:
        raise _not_found() from exc
    audit.warning("USER hard-deleted id=%s username=%r by %s", user_id, target.username, _actor(identity))
    return Response(status_code=204)
