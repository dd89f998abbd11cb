"""
membership/store.py -- SQLAlchemy Core persistence for access requests and profiles.

Pattern: Repository + Data Mapper. AccessRequestStore is the repository;
_row_to_request / _row_to_profile are the mappers. Services never touch SQL.

Security: all queries use bound parameters. No f-strings in SQL.

Transitions:
  approve() and reject() are UPDATEs conditioned on status='pending'. The
  rowcount tells whether this call won the transition. Zero rows means the
  request was already processed (or never existed) and InvalidState is raised
  before anything else is written.

  approve() runs the status update, the user insert and the profile insert in
  one engine.begin() block. An exception from any of them rolls back all three.
  sqlalchemy errors propagate unchanged; membership/service.py maps them onto
  Conflict / StoreFailure.

Usage:
    store = AccessRequestStore(Database(url))
    request_id = store.create_request(AccessRequest(email=..., first_name=..., last_name=...))
    store.approve(request_id, admin_id, user, notes="welcome")
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select

from auth.models import User
from auth.store import generate_user_id
from core.database import Database, access_requests, to_iso, user_profiles, users, utcnow
from core.errors import InvalidState
from membership.models import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED, AccessRequest, UserProfile


def _insert_profile(conn, user_id: str, request: AccessRequest) -> str:
    """Insert the profile row for a newly approved member and return its id."""
    profile_id = str(uuid.uuid4())
    conn.execute(
        user_profiles.insert().values(
            id=profile_id,
            user_id=user_id,
            first_name=request.first_name,
            last_name=request.last_name,
            phone=request.phone,
            address=request.address,
            city=request.city,
            state=request.state,
            zip=request.zip_code,
            country=request.country,
            updated_at=to_iso(utcnow()),
        )
    )
    return profile_id


class AccessRequestStore:
    """Repository for AccessRequest and UserProfile entities."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self.engine = db.engine

    # ------------------------------------------------------------------
    # Access requests
    # ------------------------------------------------------------------

    def create_request(self, request: AccessRequest) -> str:
        """Insert a pending request and return its generated ID.

        Raises sqlalchemy.exc.IntegrityError if a pending request for the same
        email already exists (partial unique index).
        """
        request_id = request.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(
                access_requests.insert().values(
                    id=request_id,
                    email=request.email,
                    first_name=request.first_name,
                    last_name=request.last_name,
                    reason=request.reason,
                    phone=request.phone,
                    address=request.address,
                    city=request.city,
                    state=request.state,
                    zip_code=request.zip_code,
                    country=request.country,
                    status=STATUS_PENDING,
                    created_at=to_iso(utcnow()),
                )
            )
            conn.commit()
        return request_id

    def get(self, request_id: str) -> Optional[AccessRequest]:
        with self.engine.connect() as conn:
            row = conn.execute(select(access_requests).where(access_requests.c.id == request_id)).fetchone()
        return _row_to_request(row) if row is not None else None

    def get_pending_by_email(self, email: str) -> Optional[AccessRequest]:
        stmt = select(access_requests).where(
            access_requests.c.email == email,
            access_requests.c.status == STATUS_PENDING,
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_request(row) if row is not None else None

    def list_requests(self, status: Optional[str] = None, oldest_first: bool = False) -> list[AccessRequest]:
        """Return requests, optionally filtered by status. Newest first unless oldest_first."""
        stmt = select(access_requests)
        if status is not None:
            stmt = stmt.where(access_requests.c.status == status)
        order = access_requests.c.created_at.asc() if oldest_first else access_requests.c.created_at.desc()
        stmt = stmt.order_by(order)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_request(r) for r in rows]

    def approve(self, request_id: str, admin_id: str, user: User, notes: Optional[str] = None) -> str:
        """Mark the request approved and provision its user and profile atomically.

        user.password_hash must already be a digest. Returns the new user id.
        Raises InvalidState if the request is not pending.
        """
        user_id = user.id or generate_user_id()
        now = to_iso(utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                access_requests.update()
                .where(access_requests.c.id == request_id, access_requests.c.status == STATUS_PENDING)
                .values(status=STATUS_APPROVED, processed_at=now, processed_by=admin_id, notes=notes)
            )
            if result.rowcount == 0:
                raise InvalidState("Access request has already been processed")
            request = _row_to_request(
                conn.execute(select(access_requests).where(access_requests.c.id == request_id)).fetchone()
            )
            conn.execute(
                users.insert().values(
                    id=user_id,
                    username=user.username,
                    email=request.email,
                    password_hash=user.password_hash,
                    is_admin=False,
                    created_at=now,
                )
            )
            _insert_profile(conn, user_id, request)
        return user_id

    def reject(self, request_id: str, admin_id: str, notes: Optional[str] = None) -> None:
        """Mark the request rejected. Raises InvalidState if it is not pending."""
        with self.engine.begin() as conn:
            result = conn.execute(
                access_requests.update()
                .where(access_requests.c.id == request_id, access_requests.c.status == STATUS_PENDING)
                .values(
                    status=STATUS_REJECTED,
                    processed_at=to_iso(utcnow()),
                    processed_by=admin_id,
                    notes=notes,
                )
            )
            if result.rowcount == 0:
                raise InvalidState("Access request has already been processed")

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self.engine.connect() as conn:
            row = conn.execute(select(user_profiles).where(user_profiles.c.user_id == user_id)).fetchone()
        return _row_to_profile(row) if row is not None else None


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _row_to_request(row) -> AccessRequest:
    return AccessRequest(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        reason=row.reason,
        phone=row.phone,
        address=row.address,
        city=row.city,
        state=row.state,
        zip_code=row.zip_code,
        country=row.country,
        status=row.status,
        created_at=row.created_at,
        processed_at=row.processed_at,
        processed_by=row.processed_by,
        notes=row.notes,
    )


def _row_to_profile(row) -> UserProfile:
    return UserProfile(
        id=row.id,
        user_id=row.user_id,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        address=row.address,
        city=row.city,
        state=row.state,
        zip=row.zip,
        country=row.country,
        updated_at=row.updated_at,
    )
