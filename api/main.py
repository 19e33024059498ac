"""
api/main.py -- FastAPI application entry point for the school admin backend.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers (credentials allowed so the
                              session cookie travels with browser requests)
  3. log_requests          -- one log line per request with latency

Lifespan builds every collaborator once from Settings and hangs it on
app.state: the shared Engine, the three stores, the token issuer, the email
sender and the two sequencers. Nothing in auth/ reads configuration itself.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.users import router as users_router
from auth.dependencies import authenticate
from auth.errors import AuthError
from auth.mailer import EmailSender, SmtpEmailSender
from auth.models import Identity
from auth.reset import PasswordResetService
from auth.seed import seed_roles_and_admin
from auth.service import AuthService
from auth.store import RoleStore, SessionStore, UserStore, open_engine, ping
from auth.tokens import Clock, TokenIssuer, utc_now
from core.config import Settings, get_settings

API_VERSION = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("schooladmin.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def wire_auth(
    app: FastAPI,
    settings: Settings,
    engine: Engine,
    sender: EmailSender,
    clock: Clock = utc_now,
) -> None:
    """Construct the auth collaborators and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both assemble the
    exact same object graph.
    """
    app.state.settings = settings
    app.state.engine = engine
    app.state.clock = clock
    app.state.user_store = UserStore(engine)
    app.state.role_store = RoleStore(engine)
    app.state.session_store = SessionStore(engine)
    app.state.issuer = TokenIssuer.from_settings(settings, clock=clock)
    app.state.email_sender = sender
    app.state.auth_service = AuthService.from_settings(
        settings,
        app.state.user_store,
        app.state.role_store,
        app.state.session_store,
        app.state.issuer,
        clock=clock,
    )
    app.state.reset_service = PasswordResetService.from_settings(settings, app.state.user_store, sender, clock=clock)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build collaborators on startup, dispose the engine on shutdown.

    Seeding runs after wiring so the first request already sees the default
    roles and an admin account.
    """
    logger.info("School admin API starting up")
    settings = get_settings()
    engine = open_engine(settings.database_url)
    wire_auth(app, settings, engine, SmtpEmailSender.from_settings(settings))
    seed_roles_and_admin(app.state.role_store, app.state.user_store, settings)
    logger.info("Auth initialized")

    yield

    engine.dispose()
    logger.info("School admin API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="School Admin API",
    description="Administration backend for students, lessons, courses and curators.",
    version=API_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by auth-protected routes.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

_boot_settings = get_settings()

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_boot_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_boot_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


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

app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(identity: Identity = Depends(authenticate)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="School Admin API")


@app.get("/redoc", include_in_schema=False)
async def redoc(identity: Identity = Depends(authenticate)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="School Admin API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render auth core failures.

    4xx errors carry their own (deliberately vague) message. 5xx errors are
    logged with full detail and answered with a generic message only.
    """
    if exc.status_code >= 500:
        logger.error(
            "Internal auth failure on %s %s: %s: %s",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc,
            exc_info=exc,
        )
        response = _error(500, "internal_error", "An unexpected error occurred.")
    else:
        response = _error(exc.status_code, exc.code, exc.message)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body or query fails validation. No field detail is echoed."""
    logger.info("Malformed request on %s %s: %s", request.method, request.url.path, exc.errors())
    return _error(400, "invalid_request", "Malformed request.")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a structured dict, use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors (store outages and the like).

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration state. No authentication.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    db_ok = ping(request.app.state.engine)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
