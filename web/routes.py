"""
web/routes.py -- Jinja2 template routes for the membership site.

These routes serve server-rendered HTML. They share app.state with the API
routes (same stores and services) but return HTML and redirects instead of
JSON.

Every handler receives the request's Identity from auth.dependencies.get_identity.
Gate failures become redirects here, not error pages:
  not authenticated -> 302 /login?next={path}
  not an admin      -> 302 /members

Form failures (core.errors.MembershipError) re-render the same template with
the message and the submitted values, using the error's status code.

Routes:
  GET  /                                          -- landing: /members or /request-access
  GET  /login                                     -- login form
  POST /login                                     -- handle login, redirect by role
  POST /logout                                    -- end session, redirect /login
  GET  /request-access                            -- access-request form
  POST /request-access                            -- submit request
  GET  /members                                   -- members area (auth required)
  GET  /change-password                           -- form (auth required)
  POST /change-password                           -- change password, re-issue cookie
  GET  /delete-account                            -- form (auth required)
  POST /delete-account                            -- delete own account
  GET  /admin                                     -- redirect to /admin/access-requests
  GET  /admin/access-requests                     -- review queue (admin)
  POST /admin/access-requests/{id}/approve        -- approve (admin)
  POST /admin/access-requests/{id}/reject         -- reject (admin)
  GET  /admin/users                               -- user list (admin)
  POST /admin/users/{id}/toggle-admin             -- flip admin flag (admin)
  POST /admin/users/{id}/delete                   -- delete user (admin)
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth import gate
from auth.accounts import AccountService
from auth.dependencies import get_identity
from auth.gate import Identity
from core.errors import Forbidden, MembershipError, Unauthorized
from membership.models import STATUS_PENDING, STATUSES, Submission
from membership.service import AccessRequestService

logger = logging.getLogger("membership.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Whitelist mapping for ?notice= query params. The raw query param is never
# passed to templates, only the message from this dict.
_NOTICES: dict[str, str] = {
    "approved": "Access request approved. The member account has been created.",
    "rejected": "Access request rejected.",
    "admin_toggled": "Admin status updated.",
    "user_deleted": "User deleted.",
    "password_changed": "Your password has been changed. Other sessions were signed out.",
    "account_deleted": "Your account has been deleted.",
}


# ---------------------------------------------------------------------------
# Gate helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> Optional[str]:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs and protocol-relative URLs (//host/...), both of
    which would send the user off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return None


def _login_redirect(request: Request) -> RedirectResponse:
    return RedirectResponse(f"/login?next={request.url.path}", status_code=302)


def _require_member(request: Request, identity: Identity) -> Optional[RedirectResponse]:
    """Return a redirect to /login if the request is anonymous, None if OK.

    Call at the top of protected route handlers:
        if redirect := _require_member(request, identity):
            return redirect
    """
    try:
        gate.require_authenticated(identity)
    except Unauthorized:
        return _login_redirect(request)
    return None


def _require_admin(request: Request, identity: Identity) -> Optional[RedirectResponse]:
    """Like _require_member, and non-admin members are sent to /members."""
    try:
        gate.require_admin(identity)
    except Unauthorized:
        return _login_redirect(request)
    except Forbidden:
        return RedirectResponse("/members", status_code=302)
    return None


def _accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def _access(request: Request) -> AccessRequestService:
    return request.app.state.access_requests


def _render(request: Request, name: str, identity: Identity, status_code: int = 200, **context) -> HTMLResponse:
    context.setdefault("error_msg", None)
    context["identity"] = identity
    return templates.TemplateResponse(request, name, context, status_code=status_code)


# ---------------------------------------------------------------------------
# Public pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(identity: Identity = Depends(get_identity)) -> RedirectResponse:
    if identity.is_authenticated:
        return RedirectResponse("/members", status_code=302)
    return RedirectResponse("/request-access", status_code=302)


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if identity.is_authenticated:
        return RedirectResponse("/members", status_code=302)
    return _render(request, "login.html", identity, next=_safe_next(request.query_params.get("next")))


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    identity: Identity = Depends(get_identity),
) -> HTMLResponse:
    """Handle the login form. Admins land on /admin, members on /members unless ?next= says otherwise."""
    accounts = _accounts(request)
    next_url = _safe_next(request.query_params.get("next"))
    if not username or not password:
        return _render(
            request, "login.html", identity, status_code=400,
            error_msg="Username and password are required", username=username, next=next_url,
        )
    try:
        token, session, user = accounts.login(username.strip(), password)
    except MembershipError as exc:
        return _render(
            request, "login.html", identity, status_code=exc.status_code,
            error_msg=exc.message, username=username, next=next_url,
        )
    target = next_url or ("/admin" if user.is_admin else "/members")
    resp = RedirectResponse(target, status_code=302)
    accounts.sessions.set_session_cookie(resp, token, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(request: Request, identity: Identity = Depends(get_identity)) -> RedirectResponse:
    accounts = _accounts(request)
    accounts.logout(identity)
    resp = RedirectResponse("/login", status_code=302)
    accounts.sessions.delete_session_cookie(resp)
    return resp


@router.get("/request-access", response_class=HTMLResponse)
def request_access_form(request: Request, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    return _render(request, "request_access.html", identity, fields={}, submitted=False)


@router.post("/request-access", response_class=HTMLResponse)
def request_access_post(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    phone: str = Form(""),
    address: str = Form(""),
    city: str = Form(""),
    state: str = Form(""),
    zip_code: str = Form("", alias="zip"),
    country: str = Form(""),
    reason: str = Form(""),
    bot_token: str = Form("", alias="cf-turnstile-response"),
    identity: Identity = Depends(get_identity),
) -> HTMLResponse:
    submission = Submission(
        name=name,
        email=email,
        zip_code=zip_code,
        reason=reason,
        phone=phone,
        address=address,
        city=city,
        state=state,
        country=country,
    )
    remote_ip = request.client.host if request.client else None
    try:
        _access(request).submit(submission, bot_token or None, remote_ip)
    except MembershipError as exc:
        return _render(
            request, "request_access.html", identity, status_code=exc.status_code,
            error_msg=exc.message, fields=exc.fields or {}, submitted=False,
        )
    return _render(request, "request_access.html", identity, fields={}, submitted=True)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/members", response_class=HTMLResponse)
def members(request: Request, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if redirect := _require_member(request, identity):
        return redirect
    profile = request.app.state.request_store.get_profile(identity.user.id)
    notice = _NOTICES.get(request.query_params.get("notice", ""))
    return _render(request, "members.html", identity, profile=profile, notice=notice)


@router.get("/change-password", response_class=HTMLResponse)
def change_password_form(request: Request, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if redirect := _require_member(request, identity):
        return redirect
    return _render(request, "change_password.html", identity)


@router.post("/change-password", response_class=HTMLResponse)
def change_password_post(
    request: Request,
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
    identity: Identity = Depends(get_identity),
) -> HTMLResponse:
    if redirect := _require_member(request, identity):
        return redirect
    accounts = _accounts(request)
    try:
        token, session = accounts.change_password(identity.user.id, current_password, new_password, confirm_password)
    except MembershipError as exc:
        return _render(request, "change_password.html", identity, status_code=exc.status_code, error_msg=exc.message)
    resp = RedirectResponse("/members?notice=password_changed", status_code=302)
    accounts.sessions.set_session_cookie(resp, token, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/delete-account", response_class=HTMLResponse)
def delete_account_form(request: Request, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if redirect := _require_member(request, identity):
        return redirect
    return _render(request, "delete_account.html", identity)


@router.post("/delete-account", response_class=HTMLResponse)
def delete_account_post(
    request: Request,
    password: str = Form(""),
    confirm: str = Form(""),
    identity: Identity = Depends(get_identity),
) -> HTMLResponse:
    if redirect := _require_member(request, identity):
        return redirect
    accounts = _accounts(request)
    try:
        accounts.delete_account(identity.user.id, password, confirm in ("on", "true", "1", "yes"))
    except MembershipError as exc:
        return _render(request, "delete_account.html", identity, status_code=exc.status_code, error_msg=exc.message)
    resp = RedirectResponse("/login", status_code=302)
    accounts.sessions.delete_session_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Admin -- access requests
# ---------------------------------------------------------------------------


@router.get("/admin")
def admin_index(request: Request, identity: Identity = Depends(get_identity)) -> RedirectResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    return RedirectResponse("/admin/access-requests", status_code=302)


def _render_requests(
    request: Request, identity: Identity, status: str, status_code: int = 200, error_msg: Optional[str] = None
) -> HTMLResponse:
    service = _access(request)
    items = service.list_pending() if status == STATUS_PENDING else service.list_requests(status or None)
    return _render(
        request, "admin_requests.html", identity, status_code=status_code,
        requests=items, status=status, statuses=STATUSES, error_msg=error_msg,
        notice=_NOTICES.get(request.query_params.get("notice", "")),
    )


@router.get("/admin/access-requests", response_class=HTMLResponse)
def admin_requests(
    request: Request, status: str = STATUS_PENDING, identity: Identity = Depends(get_identity)
) -> HTMLResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    if status not in STATUSES and status != "all":
        status = STATUS_PENDING
    return _render_requests(request, identity, "" if status == "all" else status)


@router.post("/admin/access-requests/{request_id}/approve", response_class=HTMLResponse)
def admin_approve(
    request: Request,
    request_id: str,
    username: str = Form(""),
    password: str = Form(""),
    notes: str = Form(""),
    identity: Identity = Depends(get_identity),
) -> HTMLResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    try:
        _access(request).approve(request_id, identity.user.id, username, password, notes or None)
    except MembershipError as exc:
        return _render_requests(request, identity, STATUS_PENDING, exc.status_code, exc.message)
    return RedirectResponse("/admin/access-requests?notice=approved", status_code=302)


@router.post("/admin/access-requests/{request_id}/reject", response_class=HTMLResponse)
def admin_reject(
    request: Request,
    request_id: str,
    notes: str = Form(""),
    identity: Identity = Depends(get_identity),
) -> HTMLResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    try:
        _access(request).reject(request_id, identity.user.id, notes or None)
    except MembershipError as exc:
        return _render_requests(request, identity, STATUS_PENDING, exc.status_code, exc.message)
    return RedirectResponse("/admin/access-requests?notice=rejected", status_code=302)


# ---------------------------------------------------------------------------
# Admin -- users
# ---------------------------------------------------------------------------


def _render_users(
    request: Request, identity: Identity, status_code: int = 200, error_msg: Optional[str] = None
) -> HTMLResponse:
    return _render(
        request, "admin_users.html", identity, status_code=status_code,
        users=_accounts(request).list_users(), error_msg=error_msg,
        notice=_NOTICES.get(request.query_params.get("notice", "")),
    )


@router.get("/admin/users", response_class=HTMLResponse)
def admin_users(request: Request, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    return _render_users(request, identity)


@router.post("/admin/users/{user_id}/toggle-admin", response_class=HTMLResponse)
def admin_toggle(request: Request, user_id: str, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    try:
        _accounts(request).toggle_admin(identity.user.id, user_id)
    except MembershipError as exc:
        return _render_users(request, identity, exc.status_code, exc.message)
    return RedirectResponse("/admin/users?notice=admin_toggled", status_code=302)


@router.post("/admin/users/{user_id}/delete", response_class=HTMLResponse)
def admin_delete_user(request: Request, user_id: str, identity: Identity = Depends(get_identity)) -> HTMLResponse:
    if redirect := _require_admin(request, identity):
        return redirect
    try:
        _accounts(request).delete_user(identity.user.id, user_id)
    except MembershipError as exc:
        return _render_users(request, identity, exc.status_code, exc.message)
    return RedirectResponse("/admin/users?notice=user_deleted", status_code=302)
