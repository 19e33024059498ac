"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  POST /auth/login            -- email/password login; sets session_token cookie
  POST /auth/logout           -- deletes the session; clears cookie
  POST /auth/refresh          -- rotates the session; new access token + cookie
  POST /auth/reset-password   -- mails a reset token (same reply for unknown email)
  POST /auth/new-password     -- consumes a reset token and sets a new password
  GET  /auth/me               -- identity of the caller (requires auth)
  POST /auth/change-password  -- change own password (requires auth)

Security:
  [C1] Unknown email and wrong password both return invalid_credentials.
  [M5] Cache-Control: no-store on every response that carries a token.
  Error bodies come from the AuthError handler in api/main.py; routes only
  raise.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    NewPasswordRequest,
    ResetPasswordRequest,
    TokenResponse,
)
from auth.dependencies import SESSION_COOKIE, authenticate
from auth.errors import NoSessionToken
from auth.models import Identity
from auth.reset import PasswordResetService
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - POST /auth/login, /auth/reset-password, /auth/new-password: public
# - POST /auth/logout, /auth/refresh: session cookie only
# - GET  /auth/me, POST /auth/change-password: authenticate (bearer or cookie)
router = APIRouter()


def _secure_cookies(request: Request) -> bool:
    return request.app.state.settings.secure_cookies


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie."""
    service: AuthService = request.app.state.auth_service
    result = service.login(body.email, body.password)

    resp = JSONResponse(
        content=LoginResponse(
            token=result.access_token,
            role=result.role_name,
            expires=int(result.access_expires_at.timestamp()),
        ).model_dump()
    )
    set_session_cookie(resp, result.refresh_token, result.session_expires_at, secure=_secure_cookies(request))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Delete the caller's session and clear the cookie.

    A missing cookie is a malformed request here (400), unlike refresh.
    """
    service: AuthService = request.app.state.auth_service
    try:
        service.logout(request.cookies.get(SESSION_COOKIE))
    except NoSessionToken as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": exc.code, "message": exc.message},
        ) from exc

    resp = JSONResponse(content=MessageResponse(message="successfully logged out").model_dump())
    clear_session_cookie(resp, secure=_secure_cookies(request))
    return resp


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request) -> JSONResponse:
    """Exchange the session cookie for a new access token; rotate the cookie."""
    service: AuthService = request.app.state.auth_service
    result = service.refresh(request.cookies.get(SESSION_COOKIE))

    resp = JSONResponse(
        content=TokenResponse(
            token=result.access_token,
            expires=int(result.access_expires_at.timestamp()),
        ).model_dump()
    )
    set_session_cookie(resp, result.refresh_token, result.session_expires_at, secure=_secure_cookies(request))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Mail a reset token. The reply never reveals whether the email exists."""
    service: PasswordResetService = request.app.state.reset_service
    return MessageResponse(message=service.request_reset(body.email))


@router.post("/auth/new-password", response_model=MessageResponse)
def new_password(request: Request, body: NewPasswordRequest) -> MessageResponse:
    service: PasswordResetService = request.app.state.reset_service
    service.set_new_password(body.reset_token, body.new_password)
    return MessageResponse(message="password updated successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(authenticate)) -> MeResponse:
    """Return identity information for the caller."""
    return MeResponse(
        user_id=identity.user_id,
        email=identity.user.email,
        full_name=identity.user.full_name,
        role=identity.role.name,
        role_id=identity.role.id,
        permissions=identity.role.permissions,
        session_auth=identity.is_session_auth,
    )


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(authenticate),
) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.change_password(identity.user, body.current_password, body.new_password)
    return MessageResponse(message="password updated successfully")
