"""
membership/service.py -- The access-request state machine.

    pending --approve--> approved   (terminal; provisions User + UserProfile)
    pending --reject---> rejected   (terminal)

Only pending requests can transition. The store enforces this with a
conditional UPDATE, so two admins racing on the same request produce exactly
one transition and one InvalidState.

Anonymous submission flow:
  validate -> bot verification -> uniqueness checks -> insert -> relay

Store failures raised by sqlalchemy are mapped here: unique violations become
Conflict, anything else is logged with a traceback and becomes StoreFailure.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.accounts import EMAIL_RE, normalize_email, validate_password, validate_username
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from core.errors import Conflict, ExternalServiceFailure, InvalidState, NotFound, StoreFailure, ValidationError
from membership.models import STATUS_PENDING, STATUSES, AccessRequest, Submission
from membership.store import AccessRequestStore
from membership.verification import FormRelay, TurnstileVerifier

logger = logging.getLogger("membership.access")

ZIP_RE = re.compile(r"^\d{5}$")


def split_name(name: str) -> tuple[str, str]:
    """Split a full name into (first, last). Everything after the first word is the last name."""
    parts = name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


class AccessRequestService:
    """Submission, review and provisioning of access requests."""

    def __init__(
        self,
        requests: AccessRequestStore,
        users: UserStore,
        verifier: TurnstileVerifier,
        relay: Optional[FormRelay] = None,
    ) -> None:
        self.requests = requests
        self.users = users
        self.verifier = verifier
        self.relay = relay

    # ------------------------------------------------------------------
    # Anonymous side
    # ------------------------------------------------------------------

    def submit(
        self, submission: Submission, bot_token: Optional[str] = None, remote_ip: Optional[str] = None
    ) -> AccessRequest:
        fields = submission.as_fields()
        submission.name = (submission.name or "").strip()
        submission.email = normalize_email(submission.email)
        submission.zip_code = (submission.zip_code or "").strip()

        if not submission.name or not submission.email or not submission.zip_code or not submission.reason:
            raise ValidationError("Name, email, zip code and reason are required", fields=fields)
        if not EMAIL_RE.match(submission.email):
            raise ValidationError("Please enter a valid email address", fields=fields)
        if not ZIP_RE.match(submission.zip_code):
            raise ValidationError("Zip code must be exactly 5 digits", fields=fields)
        if self.verifier.enabled and not bot_token:
            raise ValidationError("Please complete the verification challenge", fields=fields)

        try:
            self.verifier.verify(bot_token or "", remote_ip)
        except ExternalServiceFailure as exc:
            exc.fields = fields
            raise

        if self.users.get_by_email(submission.email) is not None:
            raise Conflict("An account with this email already exists", fields=fields)
        if self.requests.get_pending_by_email(submission.email) is not None:
            raise Conflict("A request for this email is already pending review", fields=fields)

        first_name, last_name = split_name(submission.name)
        request = AccessRequest(
            email=submission.email,
            first_name=first_name,
            last_name=last_name,
            reason=submission.reason,
            phone=submission.phone or None,
            address=submission.address or None,
            city=submission.city or None,
            state=submission.state or None,
            zip_code=submission.zip_code,
            country=submission.country or None,
        )
        try:
            request_id = self.requests.create_request(request)
        except IntegrityError as exc:
            raise Conflict("A request for this email is already pending review", fields=fields) from exc
        except SQLAlchemyError as exc:
            logger.exception("Storing access request failed")
            raise StoreFailure("Could not save your request. Please try again later.", fields=fields) from exc

        logger.info("Access request %s submitted", request_id)
        if self.relay is not None:
            self.relay.relay(
                {
                    "name": submission.name,
                    "email": submission.email,
                    "phone": submission.phone,
                    "address": submission.address,
                    "city": submission.city,
                    "state": submission.state,
                    "zip": submission.zip_code,
                    "country": submission.country,
                    "reason": submission.reason,
                }
            )
        return self.get(request_id)

    # ------------------------------------------------------------------
    # Admin side
    # ------------------------------------------------------------------

    def approve(
        self, request_id: str, admin_id: str, username: str, password: str, notes: Optional[str] = None
    ) -> User:
        """Approve a pending request and provision the member account."""
        request = self.get(request_id)
        if request.status != STATUS_PENDING:
            raise InvalidState("Access request has already been processed")
        username = (username or "").strip()
        validate_username(username)
        validate_password(password)
        if self.users.get_by_username(username) is not None:
            raise Conflict("Username is already taken")
        if self.users.get_by_email(request.email) is not None:
            raise Conflict("A user with this email already exists")

        user = User(username=username, email=request.email, password_hash=hash_password(password))
        try:
            user_id = self.requests.approve(request_id, admin_id, user, notes=notes or None)
        except IntegrityError as exc:
            raise Conflict("Username or email is already taken") from exc
        except SQLAlchemyError as exc:
            logger.exception("Approving access request %s failed", request_id)
            raise StoreFailure("Could not approve the request. Nothing was changed.") from exc

        logger.info("Admin %s approved access request %s as user %s", admin_id, request_id, user_id)
        return self.users.get_by_id(user_id)

    def reject(self, request_id: str, admin_id: str, notes: Optional[str] = None) -> AccessRequest:
        self.get(request_id)
        try:
            self.requests.reject(request_id, admin_id, notes=notes or None)
        except SQLAlchemyError as exc:
            logger.exception("Rejecting access request %s failed", request_id)
            raise StoreFailure("Could not reject the request. Nothing was changed.") from exc
        logger.info("Admin %s rejected access request %s", admin_id, request_id)
        return self.get(request_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> AccessRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFound("Access request not found")
        return request

    def list_pending(self) -> list[AccessRequest]:
        """Pending requests, oldest first."""
        return self.requests.list_requests(STATUS_PENDING, oldest_first=True)

    def list_requests(self, status: Optional[str] = None) -> list[AccessRequest]:
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        return self.requests.list_requests(status)
