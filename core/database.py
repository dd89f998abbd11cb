"""
core/database.py -- The durable store handle and its schema.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in auth/models.py and
membership/models.py remain the authoritative domain representation. Swapping
SQLite for PostgreSQL is a connection string change, not a rewrite.

One Database instance is constructed explicitly (by the API lifespan, or by a
test) and passed to every store constructor. There is no module-level engine:
two Database objects pointing at two URLs are fully independent, which is what
the test suite relies on.

All four tables share one MetaData so a single engine.begin() transaction can
span them (AccessRequestStore.approve writes user, user_profile and
access_request atomically).

Referential integrity: session.user_id and user_profile.user_id carry foreign
keys, but deletes are ordered explicitly in code (sessions, profile, user).
access_request.processed_by is a plain column -- deleting an admin must not be
blocked by the requests they once processed.

Layer rule: core/ is the kernel. No imports from api/, web/, auth/, or
membership/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    false,
    text,
)
from sqlalchemy.engine import Engine

from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "user",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("is_admin", Boolean, nullable=False, server_default=false()),
    Column("created_at", String(32), nullable=False),
)

user_profiles = Table(
    "user_profile",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(32), ForeignKey("user.id"), nullable=False, index=True),
    Column("first_name", Text),
    Column("last_name", Text),
    Column("phone", Text),
    Column("address", Text),
    Column("city", Text),
    Column("state", Text),
    Column("zip", Text),
    Column("country", Text),
    Column("updated_at", String(32)),
)

access_requests = Table(
    "access_request",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("reason", Text),
    Column("phone", Text),
    Column("address", Text),
    Column("city", Text),
    Column("state", Text),
    Column("zip_code", Text),
    Column("country", Text),
    Column("status", String(16), nullable=False, server_default="pending"),
    Column("created_at", String(32), nullable=False),
    Column("processed_at", String(32)),
    Column("processed_by", String(32)),
    Column("notes", Text),
)

# At most one pending request per email. Resolved requests are not covered,
# so a rejected applicant can apply again.
Index(
    "uq_access_request_pending_email",
    access_requests.c.email,
    unique=True,
    sqlite_where=access_requests.c.status == "pending",
    postgresql_where=access_requests.c.status == "pending",
)

sessions = Table(
    "session",
    metadata,
    Column("id", String(64), primary_key=True),  # SHA-256 hex of the raw token
    Column("user_id", String(32), ForeignKey("user.id"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: str) -> datetime:
    """Parse a stored timestamp. Naive values are treated as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Store handle
# ---------------------------------------------------------------------------


class Database:
    """Owns the SQLAlchemy engine and creates the schema on construction.

    Usage:
        db = Database("sqlite:///membership.db")
        users = UserStore(db)
        requests = AccessRequestStore(db)
        db.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.url = db_url or get_settings().database_url
        connect_args: dict = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(self.url, connect_args=connect_args)
        if self.url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    def close(self) -> None:
        self.engine.dispose()
