"""
auth/login.py -- Username/password login with timing equalization.

authenticate_user() always runs one bcrypt comparison, whether or not the
username exists:
  - Unknown or deactivated username: verify against the hasher's dummy hash
  - Known username: verify against the stored hash
so response time does not reveal which usernames exist.

login() wraps it: on success it stamps last_login (best effort -- a failure
comes back as a warning, the login still succeeds) and issues a token. On
failure it raises InvalidCredential with one generic message for every
reason.

Layer rule: no imports from api/ or main.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from auth.errors import InvalidCredential
from auth.models import Account, AccountView
from auth.passwords import PasswordHasher
from auth.store import UserStore
from auth.tokens import TokenService


@dataclass
class LoginResult:
    token: str
    expires_in: int
    account: AccountView
    warnings: list[str] = field(default_factory=list)


def authenticate_user(store: UserStore, hasher: PasswordHasher, username: str, password: str) -> Account | None:
    """Return the active Account whose password matches, else None."""
    account = store.get_by_username(username)
    if account is None:
        # Equalize timing -- do NOT return before running bcrypt.
        hasher.verify(password, hasher.dummy_hash)
        return None
    if not hasher.verify(password, account.password_hash):
        return None
    return account


def login(
    store: UserStore,
    hasher: PasswordHasher,
    tokens: TokenService,
    username: str,
    password: str,
) -> LoginResult:
    account = authenticate_user(store, hasher, username, password)
    if account is None:
        raise InvalidCredential("Invalid username or password.")

    warnings: list[str] = []
    warning = store.record_login(account.id)
    if warning:
        warnings.append(warning)

    token = tokens.issue(account.id, account.username, account.role)
    return LoginResult(
        token=token,
        expires_in=tokens.expire_seconds,
        account=account.view(),
        warnings=warnings,
    )
