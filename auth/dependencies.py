"""
auth/dependencies.py -- FastAPI Depends() helpers for the authorization gate.

get_identity() is the single place a request's cookie is read. It returns an
Identity (possibly anonymous) and never raises. FastAPI evaluates it once per
request and hands the same value to every dependency that asks for it.

get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.
These two are for JSON API routes. Browser routes take the Identity directly
and turn gate failures into redirects (see web/routes.py).

Layer rule: no imports from web/ or membership/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth import gate
from auth.gate import Identity
from auth.models import User
from auth.sessions import SessionManager
from core.errors import Forbidden, Unauthorized


def get_identity(request: Request) -> Identity:
    """Resolve the session cookie into an Identity. Anonymous on any failure."""
    manager: SessionManager = request.app.state.session_manager
    token = request.cookies.get(manager.settings.session_cookie_name)
    return gate.resolve_identity(manager, token)


def get_current_user(identity: Identity = Depends(get_identity)) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    try:
        return gate.require_authenticated(identity)
    except Unauthorized as exc:
        raise HTTPException(status_code=401, detail=exc.to_dict()) from exc


def require_admin(identity: Identity = Depends(get_identity)) -> User:
    """Require admin. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    try:
        return gate.require_admin(identity)
    except Unauthorized as exc:
        raise HTTPException(status_code=401, detail=exc.to_dict()) from exc
    except Forbidden as exc:
        raise HTTPException(status_code=403, detail=exc.to_dict()) from exc
