"""
auth/accounts.py -- Account operations: login, password and account changes,
account deletion, admin user management, and the dev-only admin bootstrap.

Every method raises a core.errors.MembershipError subclass on a business
failure and returns plain domain objects on success. Route handlers in api/
and web/ decide how a failure is rendered.

Security:
  authenticate() always runs a password verification, against DUMMY_HASH when
  the account does not exist, so response time does not reveal which logins
  are registered. Unknown login and wrong password raise the same
  InvalidCredentials message.

  A successful login with a legacy SHA-256 digest (or outdated Argon2
  parameters) replaces the stored digest with a fresh Argon2 one.

  Changing a password revokes every session of that user, then issues one new
  session so the device that made the change stays signed in.

Layer rule: no imports from api/, web/, or membership/.
"""

from __future__ import annotations

import hmac
import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.gate import Identity
from auth.models import Session, User
from auth.passwords import DUMMY_HASH, hash_password, needs_rehash, verify_password
from auth.sessions import SessionManager, generate_session_token
from auth.store import UserStore
from core.config import Settings, get_settings
from core.errors import Conflict, Forbidden, InvalidCredentials, NotFound, ValidationError

logger = logging.getLogger("membership.auth.accounts")

USERNAME_RE = re.compile(r"^[a-z0-9_-]{3,31}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 255
# The dedicated change-password form asks for more than the account form.
CHANGE_PASSWORD_MIN_LEN = 8


def validate_username(username: str) -> None:
    if not USERNAME_RE.match(username or ""):
        raise ValidationError(
            "Invalid username (min 3, max 31 characters, lowercase letters, digits, underscore and hyphen only)"
        )


def validate_password(password: str, min_len: int = PASSWORD_MIN_LEN) -> None:
    if not password or not (min_len <= len(password) <= PASSWORD_MAX_LEN):
        raise ValidationError(f"Invalid password (min {min_len}, max {PASSWORD_MAX_LEN} characters)")


def normalize_email(email: str) -> str:
    """Canonical stored form of an email address. Uniqueness is checked on this form."""
    return (email or "").strip().lower()


def validate_email(email: str) -> None:
    if not EMAIL_RE.match(email or ""):
        raise ValidationError("Please enter a valid email address")


class AccountService:
    """Account-level operations on top of UserStore and SessionManager."""

    def __init__(self, store: UserStore, sessions: SessionManager, settings: Settings | None = None) -> None:
        self.store = store
        self.sessions = sessions
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def authenticate(self, username_or_email: str, password: str) -> User:
        """Return the matching User or raise InvalidCredentials."""
        login = (username_or_email or "").strip().lower()
        user = self.store.get_by_login(login) if login else None
        if user is None:
            # Equalize timing -- do NOT return early before hashing.
            verify_password(password or "", DUMMY_HASH)
            raise InvalidCredentials("Invalid username or password.")
        if not verify_password(password or "", user.password_hash):
            raise InvalidCredentials("Invalid username or password.")
        if needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)
            self.store.update_user(user.id, password_hash=user.password_hash)
            logger.info("Upgraded password digest for user %s", user.id)
        return user

    def login(self, username_or_email: str, password: str) -> tuple[str, Session, User]:
        """Authenticate and issue a new session. Returns (raw token, session, user)."""
        user = self.authenticate(username_or_email, password)
        token = generate_session_token()
        session = self.sessions.create_session(token, user.id)
        logger.info("User %s logged in", user.id)
        return token, session, user

    def logout(self, identity: Identity) -> None:
        """Invalidate the session behind identity. Anonymous identities are a no-op."""
        if identity.session is not None:
            self.sessions.invalidate_session(identity.session.id)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def change_password(
        self, user_id: str, current_password: str, new_password: str, confirm_password: str
    ) -> tuple[str, Session]:
        """Replace the password, revoke all sessions, and issue a fresh one.

        Returns (raw token, session) for the device that made the change.
        """
        if not current_password or not new_password or not confirm_password:
            raise ValidationError("All fields are required")
        if len(new_password) < CHANGE_PASSWORD_MIN_LEN:
            raise ValidationError(f"New password must be at least {CHANGE_PASSWORD_MIN_LEN} characters long")
        validate_password(new_password, CHANGE_PASSWORD_MIN_LEN)
        if new_password != confirm_password:
            raise ValidationError("New passwords do not match")

        user = self._get(user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        self.store.update_user(user_id, password_hash=hash_password(new_password))
        self.sessions.invalidate_all_user_sessions(user_id)
        token = generate_session_token()
        return token, self.sessions.create_session(token, user_id)

    def update_account(
        self,
        user_id: str,
        username: str,
        email: str,
        current_password: str | None = None,
        new_password: str | None = None,
        confirm_password: str | None = None,
    ) -> tuple[User, bool]:
        """Update username/email and optionally the password.

        Returns (updated user, password_changed). When the password changed,
        every session of the user has been revoked and the caller must send
        the user back to the login page.
        """
        fields = {"username": username, "email": email}
        email = normalize_email(email)
        if not username or not email:
            raise ValidationError("Username and email are required", fields=fields)
        validate_username(username)
        validate_email(email)

        current = self._get(user_id)
        if username != current.username:
            other = self.store.get_by_username(username)
            if other is not None and other.id != user_id:
                raise Conflict("Username is already taken", fields=fields)
        if email != current.email:
            other = self.store.get_by_email(email)
            if other is not None and other.id != user_id:
                raise Conflict("Email is already taken", fields=fields)

        updates: dict = {"username": username, "email": email}
        if new_password:
            if not current_password:
                raise ValidationError("Current password is required to change password", fields=fields)
            if not verify_password(current_password, current.password_hash):
                raise InvalidCredentials("Current password is incorrect", fields=fields)
            validate_password(new_password)
            if new_password != confirm_password:
                raise ValidationError("New passwords do not match", fields=fields)
            updates["password_hash"] = hash_password(new_password)

        try:
            self.store.update_user(user_id, **updates)
        except IntegrityError as exc:
            raise Conflict("Username or email is already taken", fields=fields) from exc

        if "password_hash" in updates:
            self.sessions.invalidate_all_user_sessions(user_id)
        return self._get(user_id), "password_hash" in updates

    def delete_account(self, user_id: str, password: str, confirmed: bool) -> None:
        """Delete the caller's own account after re-checking the password."""
        if not password:
            raise ValidationError("Password is required")
        if not confirmed:
            raise ValidationError("You must confirm account deletion")
        user = self._get(user_id)
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials("Incorrect password")
        self.store.delete_user(user_id)
        logger.info("User %s deleted their account", user_id)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def toggle_admin(self, actor_id: str, user_id: str) -> User:
        """Flip the admin flag of user_id. The last admin cannot be demoted."""
        target = self._get(user_id)
        self.store.set_admin(user_id, not target.is_admin)
        logger.info("Admin %s set is_admin=%s on user %s", actor_id, not target.is_admin, user_id)
        return self._get(user_id)

    def delete_user(self, actor_id: str, user_id: str) -> None:
        if actor_id == user_id:
            raise ValidationError("You cannot delete your own account")
        if not self.store.delete_user(user_id):
            raise NotFound("User not found")
        logger.info("Admin %s deleted user %s", actor_id, user_id)

    def bootstrap_admin(self, username: str, email: str, password: str, secret: str) -> User:
        """Create an admin account. Development mode only, gated by a shared secret."""
        if not self.settings.debug:
            raise Forbidden("Not available in production")
        expected = self.settings.admin_bootstrap_secret
        if not expected or not hmac.compare_digest(secret or "", expected):
            raise Forbidden("Invalid secret key")
        email = normalize_email(email)
        validate_username(username)
        validate_email(email)
        validate_password(password)
        if self.store.get_by_username(username) is not None:
            raise Conflict(f'User "{username}" already exists')
        try:
            user_id = self.store.create_user(
                User(username=username, email=email, password_hash=hash_password(password), is_admin=True)
            )
        except IntegrityError as exc:
            raise Conflict("Username or email is already taken") from exc
        logger.info("Bootstrap admin %s created", user_id)
        return self._get(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        return user
