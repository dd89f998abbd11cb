"""
core/errors.py -- Domain error taxonomy for the membership site.

Services raise these; the API layer maps them onto HTTP statuses through the
code/status_code class attributes, and the web layer re-renders the form with
the message and the submitted fields. Nothing below core/ knows about HTTP
beyond the integer status hint.

Layer rule: no imports from api/, web/, auth/, or membership/.
"""

from __future__ import annotations

from typing import Any, Optional


class MembershipError(Exception):
    """Base class for recoverable, user-facing failures.

    message is safe to show to the end user. fields carries the originally
    submitted values (never passwords or tokens) so a form can be re-displayed.
    """

    code = "error"
    status_code = 400

    def __init__(self, message: str, *, fields: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.fields:
            payload["fields"] = dict(self.fields)
        return payload


class NotFound(MembershipError):
    code = "not_found"
    status_code = 404


class Conflict(MembershipError):
    """Unique-constraint or business-uniqueness violation."""

    code = "conflict"
    status_code = 409


class InvalidState(MembershipError):
    """A state-machine transition was attempted from a non-eligible state."""

    code = "invalid_state"
    status_code = 409


class Unauthorized(MembershipError):
    code = "unauthorized"
    status_code = 401


class InvalidCredentials(Unauthorized):
    """Unknown account or wrong password. One message for both cases."""

    code = "bad_credentials"


class Forbidden(MembershipError):
    code = "forbidden"
    status_code = 403


class ValidationError(MembershipError):
    code = "validation_error"
    status_code = 400


class ExternalServiceFailure(MembershipError):
    """Bot verification (or another upstream) was unreachable or said no."""

    code = "external_service_failure"
    status_code = 502


class StoreFailure(ExternalServiceFailure):
    """The durable store rejected or aborted a transaction."""

    code = "store_failure"
    status_code = 503
