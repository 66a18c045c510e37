"""
api/routes/v1/auth.py -- Login and self-service session endpoints.

Routes:
  POST /api/v1/auth/login     -- password login; returns a bearer token
  GET  /api/v1/auth/status    -- whether authentication is enforced (public)
  GET  /api/v1/auth/me        -- current identity (anonymous view in bypass mode)
  POST /api/v1/auth/password  -- change own password (needs a signed-in user)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  login() provides timing equalization -- use it, never inline
    get_by_username() + verify().
  Wrong username and wrong password return the same 401 body.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AuthStatusResponse, LoginRequest, LoginResponse, MeResponse, PasswordChange
from auth.dependencies import get_identity, require_identity
from auth.errors import InvalidCredential, NotFound
from auth.login import authenticate_user, login as perform_login
from auth.models import Identity
from auth.passwords import PasswordHasher, assess_strength
from auth.store import UserStore
from core.config import get_settings

audit = logging.getLogger("authgate.audit")

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - GET  /api/v1/auth/status:   public -- the login page calls it before any login
# - GET  /api/v1/auth/me:       get_identity (bypass allowed)
# - POST /api/v1/auth/password: require_identity (bypass refused -- there is no "self")
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


@limiter.limit(_login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a bearer token."""
    state = request.app.state
    try:
        result = perform_login(state.user_store, state.hasher, state.tokens, body.username, body.password)
    except InvalidCredential:
        audit.info("LOGIN failed for username=%r", body.username)
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    audit.info("LOGIN ok user_id=%s username=%r", result.account.id, result.account.username)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.token,
            expires_in=result.expires_in,
            user_id=result.account.id,
            username=result.account.username,
            role=result.account.role,
            warnings=result.warnings,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/status", response_model=AuthStatusResponse)
def auth_status(request: Request) -> AuthStatusResponse:
    return AuthStatusResponse(authentication_enabled=request.app.state.access.enforcement_enabled())


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity | None = Depends(get_identity)) -> MeResponse:
    """Return the caller's identity as carried by the token."""
    if identity is None:
        return MeResponse(authenticated=False)
    return MeResponse(
        authenticated=True,
        user_id=identity.user_id,
        username=identity.username,
        role=identity.role,
    )


@router.post("/auth/password", status_code=204)
def change_password(
    request: Request,
    body: PasswordChange,
    identity: Identity = Depends(require_identity),
) -> Response:
    """Change the caller's own password. The current password must be supplied."""
    user_store: UserStore = request.app.state.user_store
    hasher: PasswordHasher = request.app.state.hasher

    account = authenticate_user(user_store, hasher, identity.username, body.current_password)
    if account is None or account.id != identity.user_id:
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Current password is incorrect."},
        )

    report = assess_strength(body.new_password)
    if not report.valid:
        raise HTTPException(
            status_code=400,
            detail={"code": "weak_password", "message": "Password does not meet policy.", "detail": report.violations},
        )

    try:
        user_store.set_password(account.id, hasher.hash(body.new_password))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."}) from exc
    audit.info("PASSWORD changed by user_id=%s", account.id)
    return Response(status_code=204)
