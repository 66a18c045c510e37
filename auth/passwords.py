"""
auth/passwords.py -- Credential hashing and password-strength policy.

Passwords: bcrypt, used directly rather than through passlib. passlib's
wrap-bug detection feeds bcrypt a password longer than 72 bytes, which
bcrypt 4.x rejects. The cost factor is configurable (Settings.bcrypt_rounds)
so hashing stays expensive as hardware improves.

bcrypt only looks at the first 72 bytes of input and newer releases raise on
longer input, so both hash() and verify() truncate the UTF-8 encoding to 72
bytes. Doing it in both places keeps them consistent.

Failure policy: a hash that cannot be computed raises HashingFailure. Callers
abort account creation or password change -- nothing usable-looking is ever
returned in place of a real hash. verify() is the opposite: a malformed stored
hash simply does not match.

Layer rule: no imports from api/ or main.py.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import bcrypt

from auth.errors import HashingFailure

logger = logging.getLogger("authgate.passwords")

_BCRYPT_MAX_BYTES = 72
DEFAULT_ROUNDS = 10

MIN_PASSWORD_LENGTH = 8


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


@dataclass(frozen=True)
class StrengthReport:
    valid: bool
    violations: list[str] = field(default_factory=list)


def assess_strength(plain: str) -> StrengthReport:
    """Check a candidate password against the policy. Pure; touches no storage."""
    violations: list[str] = []
    if len(plain) < MIN_PASSWORD_LENGTH:
        violations.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", plain):
        violations.append("Password must contain an uppercase letter")
    if not re.search(r"[a-z]", plain):
        violations.append("Password must contain a lowercase letter")
    if not re.search(r"[0-9]", plain):
        violations.append("Password must contain a number")
    return StrengthReport(valid=not violations, violations=violations)


class PasswordHasher:
    """bcrypt hasher with a fixed cost factor.

    Usage:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        stored = hasher.hash("Secret123")
        hasher.verify("Secret123", stored)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash. Raises HashingFailure on any primitive error."""
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
            return bcrypt.hashpw(_encode(plain), salt).decode("utf-8")
        except Exception as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise HashingFailure("Password hashing failed") from exc

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Comparison is delegated to bcrypt."""
        try:
            return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    # Re-exported so callers holding a hasher do not need a second import.
    assess_strength = staticmethod(assess_strength)

    @property
    def dummy_hash(self) -> str:
        """A throwaway hash at this hasher's cost, computed on first use.

        The login flow verifies against it when the username does not exist so
        response time does not reveal whether an account exists.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("authgate_timing_dummy")
        return self._dummy_hash
