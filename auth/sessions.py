"""
auth/sessions.py -- Server-side sessions and the cookie that carries them.

Lifecycle of one session:
  issued   -- create_session() writes the row, expires_at = now + lifetime.
  valid    -- validate_session() while now < expires_at. Inside the renewal
              window the expiry slides forward to now + lifetime.
  expired  -- now >= expires_at. Read as absent; the row is deleted lazily by
              the validation that notices it.
  revoked  -- invalidate_session() / invalidate_all_user_sessions() deleted it.

Token handling:
  generate_session_token() draws 120 bits from `secrets` and base32-encodes
  them. Only session_id_for(token) -- the SHA-256 hex digest -- is stored, so
  a leaked session table cannot be replayed as cookies.

Races:
  Renewal is an UPDATE conditioned on the row still existing. If a logout
  deleted the row between the read and the renewal, the UPDATE touches zero
  rows and validation reports the session invalid. Logout always wins.

Layer rule: no imports from api/, web/, or membership/. The cookie helpers
take any Starlette-compatible response object.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from datetime import timedelta

from auth.models import Session, User
from auth.store import UserStore
from core.config import Settings, get_settings
from core.database import utcnow
from core.errors import NotFound

logger = logging.getLogger("membership.auth.sessions")


def generate_session_token() -> str:
    """Return a new opaque session token (15 random bytes, base32 lowercase)."""
    return base64.b32encode(secrets.token_bytes(15)).decode("ascii").lower()


def session_id_for(token: str) -> str:
    """Derive the stored session id from a raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionManager:
    """Issues, validates and revokes sessions backed by UserStore.

    Usage:
        manager = SessionManager(user_store)
        token = generate_session_token()
        session = manager.create_session(token, user.id)
        result = manager.validate_session(token)   # (User, Session) or None
    """

    def __init__(self, store: UserStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    @property
    def lifetime(self) -> timedelta:
        return timedelta(seconds=self.settings.session_lifetime_seconds)

    @property
    def renewal_window(self) -> timedelta:
        return timedelta(seconds=self.settings.session_renewal_seconds)

    def create_session(self, token: str, user_id: str) -> Session:
        """Persist a new session for user_id. Raises NotFound for an unknown user."""
        if self.store.get_by_id(user_id) is None:
            raise NotFound("User not found")
        session = Session(
            id=session_id_for(token),
            user_id=user_id,
            expires_at=utcnow() + self.lifetime,
        )
        self.store.create_session(session)
        return session

    def validate_session(self, token: str) -> tuple[User, Session] | None:
        """Resolve a raw token to (User, Session), or None if it is not live.

        Side effects: deletes an expired row (or one whose user is gone), and
        extends the expiry of a session used inside the renewal window.
        """
        if not token:
            return None
        session_id = session_id_for(token)
        found = self.store.get_session_with_user(session_id)
        if found is None:
            return None
        session, user = found

        now = utcnow()
        if user is None or now >= session.expires_at:
            self.store.delete_session(session_id)
            return None

        if now >= session.expires_at - self.renewal_window:
            new_expiry = now + self.lifetime
            if not self.store.update_session_expiry(session_id, new_expiry):
                # Deleted by a concurrent logout.
                return None
            session.expires_at = new_expiry
            logger.debug("Session renewed for user %s", user.id)

        return user, session

    def invalidate_session(self, session_id: str) -> None:
        """Delete one session. Deleting a missing session is not an error."""
        self.store.delete_session(session_id)

    def invalidate_all_user_sessions(self, user_id: str) -> None:
        removed = self.store.delete_user_sessions(user_id)
        logger.info("Invalidated %d session(s) for user %s", removed, user_id)

    # ------------------------------------------------------------------
    # Cookie binding
    # ------------------------------------------------------------------

    def set_session_cookie(self, response, token: str, session: Session) -> None:
        """Write the raw token as an httpOnly cookie on the response.

        httponly=True: JS cannot read the cookie (XSS mitigation).
        samesite="lax": not sent on cross-site POSTs -- CSRF mitigation for
            the form actions.
        secure: only sent over HTTPS outside debug mode (or as configured).
        max_age: the time left until the session's expiry, so cookie and
            server-side session lapse together.
        """
        max_age = max(0, int((session.expires_at - utcnow()).total_seconds()))
        response.set_cookie(
            self.settings.session_cookie_name,
            value=token,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.settings.cookie_secure,
            max_age=max_age,
        )

    def delete_session_cookie(self, response) -> None:
        """Clear the session cookie with the same attributes it was set with."""
        response.delete_cookie(
            self.settings.session_cookie_name,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.settings.cookie_secure,
        )
