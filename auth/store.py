"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper (same as membership/store.py).
UserStore is the repository; _row_to_user / _row_to_session are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Session rows are keyed by SHA-256(token). The raw token exists only in the
  client's cookie.

Integrity:
  delete_user() removes sessions, then the profile, then the user row inside
  one transaction. The store does not rely on ON DELETE CASCADE.

  set_admin() and delete_user() re-count admins inside the same transaction as
  the write, so two concurrent demotions or deletions cannot both pass the
  last-admin check on a database that serializes writers.

Layer rule: no imports from api/, web/, or membership/.
"""

from __future__ import annotations

import base64
import secrets
from datetime import datetime

from sqlalchemy import func, or_, select

from auth.models import Session, User
from core.database import Database, from_iso, to_iso, user_profiles, users, utcnow
from core.database import sessions as _sessions
from core.errors import InvalidState


def generate_user_id() -> str:
    """Return a 120-bit random identifier, base32 lowercase (24 chars)."""
    return base64.b32encode(secrets.token_bytes(15)).decode("ascii").lower()


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore(Database(url))
        user_id = store.create_user(User(username="ada", email="ada@example.com", password_hash=digest))
        user = store.get_by_login("ada")
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.engine = db.engine

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers translate that into Conflict.
        """
        user_id = user.id or generate_user_id()
        with self.engine.connect() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    is_admin=user.is_admin,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_login(self, username_or_email: str) -> User | None:
        """Look up a user whose username or email equals the given value."""
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select()
                .where(or_(users.c.username == username_or_email, users.c.email == username_or_email))
                .limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users).where(users.c.is_admin.is_(True))).scalar()
        return result or 0

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: username, email, password_hash.
        Raises IntegrityError on a duplicate username or email.

        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_admin(self, user_id: str, is_admin: bool) -> bool:
        """Set the admin flag, refusing to demote the last admin.

        Raises InvalidState when the demotion would leave no admin. Returns
        False if user_id was not found.
        """
        with self.engine.begin() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
            if row is None:
                return False
            if row.is_admin and not is_admin:
                admins = conn.execute(
                    select(func.count()).select_from(users).where(users.c.is_admin.is_(True))
                ).scalar()
                if (admins or 0) <= 1:
                    raise InvalidState("Cannot remove admin status from the last admin")
            conn.execute(users.update().where(users.c.id == user_id).values(is_admin=is_admin))
        return True

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user with its sessions and profile.

        Ordered deletes in one transaction: sessions, profile, user. Raises
        InvalidState when the user is the last admin, counted inside the same
        transaction. Returns True if the user row was deleted, False if not
        found. Self-deletion rules are the caller's responsibility.
        """
        with self.engine.begin() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
            if row is None:
                return False
            if row.is_admin:
                admins = conn.execute(
                    select(func.count()).select_from(users).where(users.c.is_admin.is_(True))
                ).scalar()
                if (admins or 0) <= 1:
                    raise InvalidState("The last admin cannot be deleted")
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(user_profiles.delete().where(user_profiles.c.user_id == user_id))
            result = conn.execute(users.delete().where(users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=to_iso(session.expires_at),
                )
            )
            conn.commit()

    def get_session_with_user(self, session_id: str) -> tuple[Session, User | None] | None:
        """Fetch a session and its owner in one round-trip.

        Returns None when the session row does not exist, and (session, None)
        when the row exists but its user is gone.
        """
        stmt = (
            select(_sessions, users.c.username, users.c.email, users.c.password_hash, users.c.is_admin, users.c.created_at)
            .select_from(_sessions.outerjoin(users, _sessions.c.user_id == users.c.id))
            .where(_sessions.c.id == session_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        session = _row_to_session(row)
        if row.username is None:
            return session, None
        user = User(
            id=row.user_id,
            username=row.username,
            email=row.email,
            password_hash=row.password_hash,
            is_admin=bool(row.is_admin),
            created_at=row.created_at,
        )
        return session, user

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def update_session_expiry(self, session_id: str, expires_at: datetime) -> bool:
        """Move a session's expiry. Returns False if the row no longer exists."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.id == session_id).values(expires_at=to_iso(expires_at))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_session(self, session_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def delete_user_sessions(self, user_id: str) -> int:
        """Delete every session owned by user_id and return how many were removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def list_user_sessions(self, user_id: str) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(_sessions.select().where(_sessions.c.user_id == user_id)).fetchall()
        return [_row_to_session(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        is_admin=bool(row.is_admin),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        expires_at=from_iso(row.expires_at),
    )
