"""
auth/tokens.py -- Stateless session tokens (JWT, HS256 via python-jose).

Security design decisions:
  Tokens carry sub (username), user_id, role, iat, exp and iss. They are
  signed with SECRET_KEY and never stored server-side, so there is no
  revocation: a token stays valid until exp. Layer a denylist on top if that
  is ever required.

  validate() returns None on ANY failure -- bad signature, wrong issuer,
  expired, garbage. Callers cannot tell an expired token from a forged one.
  inspect() exposes the tagged reason for logs and diagnostics only; the
  access controller still rejects every non-VALID status the same way.

  SECRET_KEY: sourced from core.config.get_settings(). When it is not set the
  service still works with a random per-process key, but logs a warning at
  construction and again on every issued token. Sessions do not survive a
  restart in that mode, and the deployment is insecure.

Layer rule: no imports from api/ or main.py. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from auth.models import Role, SessionClaim

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.tokens")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "user_id", "role", "iat", "exp", "iss")

DEFAULT_ISSUER = "authgate"
DEFAULT_EXPIRE_SECONDS = 24 * 3600


class TokenStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    WRONG_ISSUER = "wrong_issuer"


@dataclass(frozen=True)
class TokenCheck:
    status: TokenStatus
    claim: SessionClaim | None = None

    @property
    def valid(self) -> bool:
        return self.status is TokenStatus.VALID


class TokenService:
    """Issues and validates signed session tokens. Holds no mutable state.

    Usage:
        tokens = TokenService.from_settings(get_settings())
        token = tokens.issue(account.id, account.username, account.role)
        claim = tokens.validate(token)  # SessionClaim or None
    """

    def __init__(
        self,
        secret_key: str = "",
        issuer: str = DEFAULT_ISSUER,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
    ) -> None:
        if expire_seconds <= 0:
            raise ValueError("expire_seconds must be positive")
        self.issuer = issuer
        self.expire_seconds = expire_seconds
        self.insecure = not secret_key
        self._secret = secret_key or secrets.token_hex(32)
        if self.insecure:
            self._warn_insecure()

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.token_issuer,
            expire_seconds=settings.token_expire_seconds,
        )

    def _warn_insecure(self) -> None:
        logger.warning(
            "INSECURE: SECRET_KEY is not set. Tokens are signed with a random per-process key; "
            "set SECRET_KEY (32+ chars) before running in production."
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, user_id: int, username: str, role: Role | str, *, now: datetime | None = None) -> str:
        """Encode a signed token valid for expire_seconds from `now` (default: current UTC time)."""
        if self.insecure:
            self._warn_insecure()
        issued_at = now or datetime.now(timezone.utc)
        expires_at = issued_at + timedelta(seconds=self.expire_seconds)
        payload = {
            "sub": username,
            "user_id": user_id,
            "role": Role(role).value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.issuer,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def inspect(self, token: str) -> TokenCheck:
        """Verify signature, issuer and expiry; report which check failed."""
        try:
            unverified = jwt.get_unverified_claims(token)
        except JWTError:
            return TokenCheck(TokenStatus.MALFORMED)
        if any(name not in unverified for name in _REQUIRED_CLAIMS):
            return TokenCheck(TokenStatus.MALFORMED)

        try:
            payload = jwt.decode(token, self._secret, algorithms=[_ALGORITHM], issuer=self.issuer)
        except ExpiredSignatureError:
            return TokenCheck(TokenStatus.EXPIRED)
        except JWTClaimsError:
            if unverified.get("iss") != self.issuer:
                return TokenCheck(TokenStatus.WRONG_ISSUER)
            return TokenCheck(TokenStatus.MALFORMED)
        except JWTError:
            return TokenCheck(TokenStatus.BAD_SIGNATURE)

        claim = _payload_to_claim(payload)
        if claim is None:
            return TokenCheck(TokenStatus.MALFORMED)
        return TokenCheck(TokenStatus.VALID, claim)

    def validate(self, token: str) -> SessionClaim | None:
        """Return the SessionClaim for a valid token, None for anything else."""
        return self.inspect(token).claim

    @staticmethod
    def extract_from_header(header_value: str | None) -> str | None:
        """Return the token from 'Bearer <token>'. Any other shape yields None, never an error."""
        if not header_value:
            return None
        scheme, _, credentials = header_value.partition(" ")
        if scheme != "Bearer":
            return None
        token = credentials.strip()
        return token or None


def _payload_to_claim(payload: dict) -> SessionClaim | None:
    user_id = payload.get("user_id")
    username = payload.get("sub")
    # bool is an int subclass; a token saying user_id=true is not a user id.
    if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(username, str):
        return None
    try:
        role = Role(payload.get("role"))
        issued_at = datetime.fromtimestamp(payload["iat"], tz=timezone.utc)
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    except (KeyError, TypeError, ValueError, OverflowError, OSError):
        return None
    return SessionClaim(
        user_id=user_id,
        username=username,
        role=role,
        issued_at=issued_at,
        expires_at=expires_at,
    )
