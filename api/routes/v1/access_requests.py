"""
api/routes/v1/access_requests.py -- Access-request submission and review.

Routes:
  POST /api/v1/request-access                       -- anonymous submission
  GET  /api/v1/access-requests[?status=pending]     -- list (admin only)
  GET  /api/v1/access-requests/{id}                 -- one request (admin only)
  POST /api/v1/access-requests/{id}/approve         -- approve + provision member (admin only)
  POST /api/v1/access-requests/{id}/reject          -- reject (admin only)

A second approve/reject of the same request answers 409 invalid_state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AccessRequestApprove,
    AccessRequestCreate,
    AccessRequestReject,
    AccessRequestResponse,
    RequestStatusEnum,
    SubmissionResponse,
    UserResponse,
)
from auth.dependencies import require_admin
from auth.models import User
from membership.models import Submission
from membership.service import AccessRequestService

# Auth policy:
# - POST /api/v1/request-access:        public (bot verification inside the service)
# - everything under /access-requests:  requires admin (require_admin)
router = APIRouter()


def _service(request: Request) -> AccessRequestService:
    return request.app.state.access_requests


@router.post("/request-access", response_model=SubmissionResponse, status_code=201)
def submit(request: Request, body: AccessRequestCreate) -> SubmissionResponse:
    submission = Submission(
        name=body.name,
        email=body.email,
        zip_code=body.zip_code,
        reason=body.reason,
        phone=body.phone,
        address=body.address,
        city=body.city,
        state=body.state,
        country=body.country,
    )
    remote_ip = request.client.host if request.client else None
    created = _service(request).submit(submission, body.bot_token, remote_ip)
    return SubmissionResponse(id=created.id, status=created.status)


@router.get("/access-requests", response_model=list[AccessRequestResponse])
def list_requests(
    request: Request,
    status: Optional[RequestStatusEnum] = Query(default=None),
    admin: User = Depends(require_admin),
) -> list[AccessRequestResponse]:
    """List requests. status=pending returns the review queue oldest first."""
    service = _service(request)
    if status == RequestStatusEnum.pending:
        items = service.list_pending()
    else:
        items = service.list_requests(status.value if status else None)
    return [AccessRequestResponse.from_request(r) for r in items]


@router.get("/access-requests/{request_id}", response_model=AccessRequestResponse)
def get_request(request: Request, request_id: str, admin: User = Depends(require_admin)) -> AccessRequestResponse:
    return AccessRequestResponse.from_request(_service(request).get(request_id))


@router.post("/access-requests/{request_id}/approve", response_model=UserResponse, status_code=201)
def approve(
    request: Request,
    request_id: str,
    body: AccessRequestApprove,
    admin: User = Depends(require_admin),
) -> UserResponse:
    """Approve a pending request. Returns the newly provisioned member."""
    user = _service(request).approve(request_id, admin.id, body.username, body.password, body.notes)
    return UserResponse.from_user(user)


@router.post("/access-requests/{request_id}/reject", response_model=AccessRequestResponse)
def reject(
    request: Request,
    request_id: str,
    body: Optional[AccessRequestReject] = None,
    admin: User = Depends(require_admin),
) -> AccessRequestResponse:
    notes = body.notes if body is not None else None
    return AccessRequestResponse.from_request(_service(request).reject(request_id, admin.id, notes))
