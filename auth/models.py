"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store, token service and routes do the work.

Account carries password_hash and never leaves the auth package in a response.
AccountView is the hash-free projection returned by every lookup that could
reach an API client.

Layer rule: no imports from api/ or main.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    user = "user"


@dataclass
class Account:
    """A stored user account, including its bcrypt hash."""

    id: int
    username: str
    password_hash: str
    role: Role = Role.user
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None
    is_active: bool = True

    def view(self) -> AccountView:
        return AccountView(
            id=self.id,
            username=self.username,
            role=self.role,
            created_at=self.created_at,
            updated_at=self.updated_at,
            last_login_at=self.last_login_at,
            is_active=self.is_active,
        )


@dataclass
class AccountView:
    """Account without password_hash. Safe to serialize."""

    id: int
    username: str
    role: Role
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class SessionClaim:
    """Identity facts reconstructed from a validated token.

    Never persisted. Lives for the duration of one request.
    """

    user_id: int
    username: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class Identity:
    """The subset of a SessionClaim attached to the request context."""

    user_id: int
    username: str
    role: Role

    @classmethod
    def from_claim(cls, claim: SessionClaim) -> Identity:
        return cls(user_id=claim.user_id, username=claim.username, role=claim.role)
