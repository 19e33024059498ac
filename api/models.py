"""
API request and response models for the school admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two; a
password hash never appears in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.tokens import PASSWORD_MAX_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes of a password. Character count is
# only a first cut; _check_password_bytes enforces the byte limit.
PASSWORD_MAX_LEN = PASSWORD_MAX_BYTES


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
    return value


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Auth -- request models
#
# Passwords are taken verbatim: only emails are whitespace-stripped.
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)

    _strip_email = field_validator("email", mode="before")(_strip)
    _password_bytes = field_validator("password")(_check_password_bytes)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)


class NewPasswordRequest(BaseModel):
    """Request body for POST /auth/new-password.

    Accepts both camelCase (resetToken/newPassword) and snake_case keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    reset_token: str = Field(alias="resetToken", min_length=1, max_length=64)
    new_password: str = Field(alias="newPassword", min_length=1, max_length=PASSWORD_MAX_LEN)

    _password_bytes = field_validator("new_password")(_check_password_bytes)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/change-password."""

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)

    _password_bytes = field_validator("current_password", "new_password")(_check_password_bytes)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for POST /auth/login. expires is the access token expiry (unix seconds)."""

    model_config = ConfigDict(frozen=True)

    token: str
    role: str
    expires: int


class TokenResponse(BaseModel):
    """Response for POST /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    token: str
    expires: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(BaseModel):
    """Response for GET /auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    full_name: str
    role: str
    role_id: int
    permissions: dict[str, bool]
    session_auth: bool


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /settings/users."""

    full_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    telephone: str = Field(default="", max_length=50)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)
    role_id: int = Field(gt=0)

    _strip_text = field_validator("full_name", "email", "telephone", mode="before")(_strip)
    _password_bytes = field_validator("password")(_check_password_bytes)


class UserUpdate(BaseModel):
    """Request body for PUT /settings/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    telephone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value is not None else None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    full_name: str
    email: str
    telephone: str
    role_id: int
    created_at: str


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
