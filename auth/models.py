"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in membership/models.py -- dataclasses own domain shape; stores and services
do the work.

Layer rule: no imports from api/, web/, or membership/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A member account.

    password_hash is either an Argon2 PHC string (everything written by this
    code base) or a legacy 64-char SHA-256 hex digest inherited from the
    previous system. auth/passwords.py tells the two apart.

    id is None before the record is written to the database.
    """

    username: str
    email: str
    password_hash: str
    is_admin: bool = False
    id: str | None = None
    created_at: str | None = None  # ISO 8601, set by store on insert


@dataclass
class Session:
    """A server-side login session.

    id is the SHA-256 hex digest of the raw cookie token, never the token
    itself. Reading the session table does not let anyone log in.
    """

    id: str
    user_id: str
    expires_at: datetime
