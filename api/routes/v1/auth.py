"""
api/routes/v1/auth.py -- Login, logout, identity and password change.

Routes:
  POST /api/v1/auth/login      -- username-or-email + password; sets session cookie
  POST /api/v1/auth/logout     -- invalidates the current session; clears cookie
  GET  /api/v1/auth/me         -- current user (requires auth)
  POST /api/v1/auth/password   -- change password; all sessions revoked, new cookie issued

Security:
  AccountService.authenticate() provides timing equalization -- never inline
  a lookup + verify here.
  Unknown login and wrong password return the same "bad_credentials" error.
  Cache-Control: no-store on every response that sets or clears the cookie.

Domain failures are raised as core.errors.MembershipError and rendered by the
exception handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginRequest, LoginResponse, MessageResponse, PasswordChange, UserResponse
from auth.accounts import AccountService
from auth.dependencies import get_current_user, get_identity
from auth.gate import Identity
from auth.models import User
from core.database import to_iso

# Auth policy:
# - POST /api/v1/auth/login:     public
# - POST /api/v1/auth/logout:    public -- logging out without a session is a no-op
# - GET  /api/v1/auth/me:        requires auth (get_current_user)
# - POST /api/v1/auth/password:  requires auth (get_current_user)
router = APIRouter()


def _landing_for(user: User) -> str:
    return "/admin" if user.is_admin else "/members"


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate and open a session. Sets the session cookie on success."""
    accounts: AccountService = request.app.state.accounts
    token, session, user = accounts.login(body.username, body.password)
    resp = JSONResponse(
        content=LoginResponse(
            user=UserResponse.from_user(user),
            expires_at=to_iso(session.expires_at),
            redirect_to=_landing_for(user),
        ).model_dump(),
    )
    accounts.sessions.set_session_cookie(resp, token, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, identity: Identity = Depends(get_identity)) -> JSONResponse:
    """Invalidate the current session (if any) and clear the cookie."""
    accounts: AccountService = request.app.state.accounts
    accounts.logout(identity)
    resp = JSONResponse(content={"message": "Logged out."})
    accounts.sessions.delete_session_cookie(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_user(current_user)


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Change the caller's password.

    Every session of the user is revoked, including the one used for this
    request. A fresh session is issued to this client so it stays logged in.
    """
    accounts: AccountService = request.app.state.accounts
    token, session = accounts.change_password(
        current_user.id, body.current_password, body.new_password, body.confirm_password
    )
    resp = JSONResponse(content={"message": "Password changed. Other sessions have been signed out."})
    accounts.sessions.set_session_cookie(resp, token, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp
