"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

No response model has a password or password_hash field. UserResponse is built
from AccountView, which cannot carry one.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AccountView, Role

# Usernames: printable, no whitespace. Case-sensitive.
USERNAME_PATTERN = r"^[A-Za-z0-9_.@-]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class PasswordChange(BaseModel):
    """Request body for POST /api/v1/auth/password (self-service)."""

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class PasswordReset(BaseModel):
    """Request body for PUT /api/v1/users/{id}/password (admin)."""

    new_password: str = Field(min_length=1, max_length=255)


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    username: str = Field(min_length=1, max_length=255, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=1, max_length=255)
    role: Role = Role.user


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str | None = Field(default=None, min_length=1, max_length=255, pattern=USERNAME_PATTERN)
    role: Role | None = None
    is_active: bool | None = None


class EnforcementUpdate(BaseModel):
    """Request body for PUT /api/v1/admin/enforcement."""

    enabled: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """One account as seen by an admin. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: Role
    is_active: bool
    created_at: str
    updated_at: str
    last_login_at: str | None = None

    @classmethod
    def from_view(cls, view: AccountView) -> "UserResponse":
        return cls(
            id=view.id,
            username=view.username,
            role=view.role,
            is_active=view.is_active,
            created_at=view.created_at or "",
            updated_at=view.updated_at or "",
            last_login_at=view.last_login_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int
    username: str
    role: Role
    warnings: list[str] = Field(default_factory=list)


class MeResponse(BaseModel):
    """Identity of the caller. In bypass mode authenticated is False and the rest is empty."""

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    user_id: int | None = None
    username: str | None = None
    role: Role | None = None


class AuthStatusResponse(BaseModel):
    """Public: tells a login page whether it needs to show a login form."""

    model_config = ConfigDict(frozen=True)

    authentication_enabled: bool


class EnforcementResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool
    updated_at: str | None = None
    updated_by: str | None = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Any | None = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
