"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only the Authorization: Bearer <token> header is recognised. The decision
itself is made by AccessController (auth/access.py); this module wires it into
FastAPI and turns domain errors into HTTP responses:

  AuthenticationRequired / InvalidCredential -> 401 + WWW-Authenticate: Bearer
  Forbidden                                  -> 403, detail lists required roles

get_identity() is the soft variant: it returns None when enforcement is
disabled (bypass mode). require_identity() additionally refuses bypass, for
the few routes that only make sense for a known caller. require_roles()
authorizes against a role set and lets bypassed requests through unchanged.

The resolved identity (or None) is stored on request.state.identity and
request.state.auth_bypassed so downstream handlers and logs can read it.

Layer rule: no imports from api/ or main.py. This module may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.access import AccessController
from auth.errors import AuthenticationRequired, Forbidden, InvalidCredential
from auth.models import Identity, Role


def _context(request: Request) -> str:
    return f"{request.method} {request.url.path}"


def get_identity(request: Request) -> Identity | None:
    """Authenticate the request. Raises HTTP 401 on a missing or invalid token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity | None = Depends(get_identity)): ...
    """
    access: AccessController = request.app.state.access
    try:
        identity = access.authenticate(request.headers.get("Authorization"), context=_context(request))
    except AuthenticationRequired as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    except InvalidCredential as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": "Invalid or expired token."},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    request.state.identity = identity
    request.state.auth_bypassed = identity is None
    return identity


def require_identity(request: Request) -> Identity:
    """Like get_identity(), but a bypassed request (no identity) is a 401 too."""
    identity = get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "This operation needs a signed-in user."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_roles(*roles: Role) -> Callable[[Request], Identity | None]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(identity: Identity | None = Depends(require_roles(Role.admin))): ...
    """

    def dependency(request: Request) -> Identity | None:
        identity = get_identity(request)
        if identity is None:
            return None
        access: AccessController = request.app.state.access
        try:
            access.authorize(identity, roles, context=_context(request))
        except Forbidden as exc:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": exc.code,
                    "message": f"Access denied. Required role: {' or '.join(exc.required_roles)}",
                    "detail": {"required_roles": list(exc.required_roles)},
                },
            ) from exc
        return identity

    return dependency


require_admin = require_roles(Role.admin)
