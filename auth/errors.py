"""
auth/errors.py -- Exception taxonomy for the auth package.

Domain code raises these; the HTTP seam (auth/dependencies.py, api/routes/)
translates them into HTTPException with the structured error envelope.

Fatal (programming or infrastructure errors, abort the operation):
  NotInitialized, HashingFailure, PersistenceFailure

Recoverable (surfaced to the caller):
  DuplicateUsername, NotFound, AuthenticationRequired, InvalidCredential,
  Forbidden

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""

    code: str = "auth_error"


class NotInitialized(AuthError):
    """The UserStore was used before initialize() completed."""

    code = "not_initialized"


class DuplicateUsername(AuthError):
    """The username collides with an existing row (active or not)."""

    code = "conflict"

    def __init__(self, username: str) -> None:
        super().__init__(f"Username already exists: {username!r}")
        self.username = username


class NotFound(AuthError):
    code = "not_found"

    def __init__(self, user_id: int) -> None:
        super().__init__(f"No account with id {user_id}")
        self.user_id = user_id


class AuthenticationRequired(AuthError):
    """No bearer token was presented."""

    code = "unauthorized"


class InvalidCredential(AuthError):
    """Token or password rejected. Deliberately carries no reason."""

    code = "invalid_credential"


class Forbidden(AuthError):
    """Authenticated, but the role is not in the required set.

    Only the required roles are exposed -- never the caller's identity or
    anything about other accounts.
    """

    code = "forbidden"

    def __init__(self, required_roles: tuple[str, ...]) -> None:
        super().__init__(f"Requires role: {' or '.join(required_roles)}")
        self.required_roles = required_roles


class HashingFailure(AuthError):
    """The hashing primitive failed. No hash may be stored."""

    code = "hashing_failure"


class PersistenceFailure(AuthError):
    """Writing the enforcement setting failed."""

    code = "persistence_failure"
