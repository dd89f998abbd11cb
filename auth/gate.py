"""
auth/gate.py -- The authorization gate: identity resolution and access checks.

The gate turns an inbound session token into an Identity value exactly once
per request. Handlers receive that value as a parameter; nothing here is
cached across requests, because a session can be revoked and an admin flag
can be toggled between two requests from the same browser.

require_authenticated() and require_admin() are pure predicates over an
Identity. They raise; the transport layer decides what a failure looks like
(redirect for browser routes, 401/403 JSON for the API).

Layer rule: no imports from api/, web/, or membership/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.models import Session, User
from auth.sessions import SessionManager
from core.errors import Forbidden, Unauthorized


@dataclass(frozen=True)
class Identity:
    """Who is making this request. Both fields are None for anonymous visitors."""

    user: User | None = None
    session: Session | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.is_admin


ANONYMOUS = Identity()


def resolve_identity(manager: SessionManager, token: str | None) -> Identity:
    """Validate the token and return the matching Identity (anonymous on failure)."""
    if not token:
        return ANONYMOUS
    result = manager.validate_session(token)
    if result is None:
        return ANONYMOUS
    user, session = result
    return Identity(user=user, session=session)


def require_authenticated(identity: Identity) -> User:
    if identity.user is None:
        raise Unauthorized("Authentication required.")
    return identity.user


def require_admin(identity: Identity) -> User:
    """Authenticated first, admin second -- the order decides the failure kind."""
    user = require_authenticated(identity)
    if not user.is_admin:
        raise Forbidden("Admin access required.")
    return user
