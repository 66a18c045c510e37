"""
auth/access.py -- Framework-free access control decisions.

Per request:
    Unauthenticated -> Authenticating -> Authenticated | Rejected
    Authenticated   -> Authorized | Forbidden        (role-gated operations)

AccessController.authenticate() takes the raw Authorization header and either
returns the caller's Identity, returns None (enforcement disabled -- bypass),
or raises AuthenticationRequired / InvalidCredential. authorize() checks an
Identity against a required role set and raises Forbidden on mismatch.

Nothing here mutates state, so a rejected request repeated with the same
token is rejected the same way. The HTTP translation lives in
auth/dependencies.py.

Audit: every bypass and every rejection is written to the authgate.audit
logger. Bypassed requests are tagged BYPASS so they stand out from normal
authenticated traffic. The specific token failure (expired, bad signature,
...) goes to the audit log only, never to the client.

Layer rule: no imports from api/, main.py or fastapi.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.enforcement import EnforcementToggle
from auth.errors import AuthenticationRequired, Forbidden, InvalidCredential
from auth.models import Identity, Role
from auth.tokens import TokenService

audit = logging.getLogger("authgate.audit")


class AccessController:
    def __init__(self, tokens: TokenService, toggle: EnforcementToggle) -> None:
        self.tokens = tokens
        self.toggle = toggle

    def enforcement_enabled(self) -> bool:
        return self.toggle.is_enabled()

    def authenticate(self, authorization: str | None, *, context: str = "") -> Identity | None:
        """Resolve the caller's identity from an Authorization header value.

        Returns None only when enforcement is disabled. `context` (e.g.
        "GET /api/v1/users") is used for audit lines.
        """
        if not self.enforcement_enabled():
            audit.info("BYPASS auth disabled, no identity attached: %s", context)
            return None

        token = self.tokens.extract_from_header(authorization)
        if token is None:
            audit.info("REJECT no bearer token: %s", context)
            raise AuthenticationRequired("Authentication required.")

        check = self.tokens.inspect(token)
        if check.claim is None:
            audit.info("REJECT invalid token (%s): %s", check.status.value, context)
            raise InvalidCredential("Invalid or expired token.")

        return Identity.from_claim(check.claim)

    def authorize(self, identity: Identity, required_roles: Iterable[Role | str], *, context: str = "") -> None:
        """Raise Forbidden unless identity.role is one of required_roles."""
        required = tuple(Role(r) for r in required_roles)
        if identity.role in required:
            return
        audit.info(
            "FORBIDDEN user_id=%s role=%s required=%s: %s",
            identity.user_id,
            identity.role.value,
            ",".join(r.value for r in required),
            context,
        )
        raise Forbidden(tuple(r.value for r in required))
