"""
api/main.py -- FastAPI application entry point for the membership site.

Exposes the account, session and access-request services over a JSON API
under /api/v1. The browser UI (web/routes.py) is mounted on the same app by
asgi.py and shares app.state with these routes.

Run with:      uvicorn asgi:app --reload

Lifespan handles startup (database, stores, services, outbound clients) and
shutdown (dispose the engine, close HTTP sessions) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.access_requests import router as access_requests_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.accounts import AccountService
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings
from core.database import Database
from core.errors import MembershipError
from membership.service import AccessRequestService
from membership.store import AccessRequestStore
from membership.verification import FormRelay, TurnstileVerifier

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("membership.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_state(app: FastAPI, db: Database, verifier: TurnstileVerifier, relay: FormRelay) -> None:
    """Construct stores and services on top of db and attach them to app.state.

    Shared by the real lifespan and the test fixtures so both wire the
    application the same way.
    """
    settings = get_settings()
    app.state.db = db
    app.state.user_store = UserStore(db)
    app.state.request_store = AccessRequestStore(db)
    app.state.session_manager = SessionManager(app.state.user_store, settings)
    app.state.accounts = AccountService(app.state.user_store, app.state.session_manager, settings)
    app.state.verifier = verifier
    app.state.relay = relay
    app.state.access_requests = AccessRequestService(app.state.request_store, app.state.user_store, verifier, relay)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Membership API starting up (debug=%s)", settings.debug)
    db = Database(settings.database_url)
    verifier = TurnstileVerifier(settings)
    relay = FormRelay(settings)
    build_state(app, db, verifier, relay)
    logger.info(
        "Stores initialized (bot_verification=%s, form_relay=%s)",
        verifier.enabled,
        relay.enabled,
    )

    yield

    verifier.session.close()
    relay.session.close()
    db.close()
    logger.info("Membership API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Membership API",
    description="Access requests, member accounts and sessions.",
    version=VERSION,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time is captured around call_next so latency is
# reported on every response.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(access_requests_router, prefix="/api/v1", tags=["Access requests"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(MembershipError)
async def membership_error_handler(request: Request, exc: MembershipError) -> JSONResponse:
    """Render a domain failure with its own status code and machine code."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                fields=exc.fields or None,
            )
        ).model_dump(),
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    The auth dependencies raise HTTPException with detail=MembershipError.to_dict()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    db: Database = request.app.state.db
    components = {"app": "ok", "database": "ok" if db.ping() else "unavailable"}
    status = "ok" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
