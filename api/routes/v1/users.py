"""
api/routes/v1/users.py -- Self-service account endpoints and admin user management.

Routes:
  PATCH  /api/v1/account                    -- update own username/email (+ optional password)
  DELETE /api/v1/account                    -- delete own account; clears cookie
  GET    /api/v1/users                      -- list users (admin only)
  POST   /api/v1/users/{id}/toggle-admin    -- flip admin flag (admin only)
  DELETE /api/v1/users/{id}                 -- delete a user (admin only, not self)
  POST   /api/v1/admin/create               -- bootstrap an admin (debug mode + shared secret)

Security:
  The last admin can neither be demoted nor delete their own account.
  /admin/create answers 403 outside debug mode regardless of the secret.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import AccountDelete, AccountUpdate, AccountUpdateResponse, AdminBootstrap, UserResponse
from auth.accounts import AccountService
from auth.dependencies import get_current_user, require_admin
from auth.models import User

# Auth policy:
# - PATCH/DELETE /api/v1/account:            requires auth (get_current_user)
# - GET/POST/DELETE /api/v1/users...:        requires admin (require_admin)
# - POST /api/v1/admin/create:               public, gated by DEBUG + ADMIN_BOOTSTRAP_SECRET
router = APIRouter()


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


@router.patch("/account", response_model=AccountUpdateResponse)
def update_account(
    request: Request,
    body: AccountUpdate,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Update the caller's account.

    When the password changes, every session is revoked and the cookie is
    cleared: the client has to log in again.
    """
    accounts: AccountService = request.app.state.accounts
    user, password_changed = accounts.update_account(
        current_user.id,
        body.username,
        body.email,
        current_password=body.current_password,
        new_password=body.new_password,
        confirm_password=body.confirm_password,
    )
    resp = JSONResponse(
        content=AccountUpdateResponse(user=UserResponse.from_user(user), password_changed=password_changed).model_dump()
    )
    if password_changed:
        accounts.sessions.delete_session_cookie(resp)
    return resp


@router.delete("/account", status_code=204)
def delete_account(
    request: Request,
    body: AccountDelete,
    current_user: User = Depends(get_current_user),
) -> Response:
    accounts: AccountService = request.app.state.accounts
    accounts.delete_account(current_user.id, body.password, body.confirm)
    resp = Response(status_code=204)
    accounts.sessions.delete_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, admin: User = Depends(require_admin)) -> list[UserResponse]:
    accounts: AccountService = request.app.state.accounts
    return [UserResponse.from_user(u) for u in accounts.list_users()]


@router.post("/users/{user_id}/toggle-admin", response_model=UserResponse)
def toggle_admin(request: Request, user_id: str, admin: User = Depends(require_admin)) -> UserResponse:
    accounts: AccountService = request.app.state.accounts
    return UserResponse.from_user(accounts.toggle_admin(admin.id, user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str, admin: User = Depends(require_admin)) -> Response:
    accounts: AccountService = request.app.state.accounts
    accounts.delete_user(admin.id, user_id)
    return Response(status_code=204)


@router.post("/admin/create", response_model=UserResponse, status_code=201)
def bootstrap_admin(request: Request, body: AdminBootstrap) -> UserResponse:
    """Create an admin account on a fresh development install."""
    accounts: AccountService = request.app.state.accounts
    return UserResponse.from_user(accounts.bootstrap_admin(body.username, body.email, body.password, body.secret))
