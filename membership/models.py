"""
membership/models.py -- Domain dataclasses for the access-request workflow.

These are pure data containers with zero logic. Validation and status
transitions live in membership/service.py; SQL lives in membership/store.py.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


@dataclass
class Submission:
    """What an anonymous visitor typed into the request-access form.

    name is the full name as entered. The service splits it into first and
    last name when the request is stored.
    """

    name: str
    email: str
    zip_code: str
    reason: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    def as_fields(self) -> dict:
        """Submitted values for re-displaying the form."""
        return asdict(self)


@dataclass
class AccessRequest:
    """A request to become a member.

    status moves pending -> approved or pending -> rejected exactly once.
    processed_at, processed_by and notes are written together with the status.

    id is None before the record is written to the database.
    """

    email: str
    first_name: str
    last_name: str
    reason: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    status: str = STATUS_PENDING  # "pending" | "approved" | "rejected"
    id: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    processed_at: Optional[str] = None
    processed_by: Optional[str] = None  # admin user id
    notes: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class UserProfile:
    """Contact details copied from the access request when a member is approved."""

    user_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None
    id: Optional[str] = None
    updated_at: Optional[str] = None
