"""
API request and response models for the membership REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
membership/models.py, which own the internal domain representation. Route
handlers map between the two with the from_* constructors below.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
Password fields never appear in a response model.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User
from membership.models import AccessRequest

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RequestStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "ok" when every component reports "ok", otherwise "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth / account
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. username may also be an email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class UserResponse(BaseModel):
    """Public view of a user account."""

    id: str
    username: str
    email: str
    is_admin: bool
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            is_admin=user.is_admin,
            created_at=user.created_at,
        )


class LoginResponse(BaseModel):
    user: UserResponse
    expires_at: str
    redirect_to: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class AccountUpdate(BaseModel):
    """Request body for PATCH /api/v1/account. Password fields are optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str
    email: str
    current_password: Optional[str] = None
    new_password: Optional[str] = None
    confirm_password: Optional[str] = None


class AccountUpdateResponse(BaseModel):
    user: UserResponse
    password_changed: bool


class AccountDelete(BaseModel):
    password: str
    confirm: bool = False


class AdminBootstrap(BaseModel):
    """Request body for POST /api/v1/admin/create (development mode only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str
    email: str
    password: str
    secret: str


# ---------------------------------------------------------------------------
# Access requests
# ---------------------------------------------------------------------------


class AccessRequestCreate(BaseModel):
    """Request body for POST /api/v1/request-access.

    bot_token carries the Turnstile widget response. The browser form posts
    it as cf-turnstile-response; JSON clients use this field.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    email: str = ""
    zip_code: str = ""
    reason: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    bot_token: Optional[str] = None


class AccessRequestApprove(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str
    password: str
    notes: Optional[str] = None


class AccessRequestReject(BaseModel):
    notes: Optional[str] = None


class AccessRequestResponse(BaseModel):
    id: str
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
    status: RequestStatusEnum
    created_at: str
    processed_at: Optional[str] = None
    processed_by: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_request(cls, request: AccessRequest) -> "AccessRequestResponse":
        return cls(
            id=request.id,
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
            status=request.status,
            created_at=request.created_at,
            processed_at=request.processed_at,
            processed_by=request.processed_by,
            notes=request.notes,
        )


class SubmissionResponse(BaseModel):
    """Acknowledgement for an anonymous submission. Deliberately minimal."""

    id: str
    status: RequestStatusEnum
    message: str = "Your request has been submitted and is awaiting review."
