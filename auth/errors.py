"""
auth/errors.py -- Typed failures raised by the auth core.

Every public error carries the HTTP status, a machine-readable code and a
deliberately vague message. The api/ layer renders these into the standard
{"error": {"code", "message"}} envelope; nothing in auth/ builds responses.

Several internal conditions collapse into one public error so a client can
never tell which sub-check failed:

  UnknownEmail, PasswordMismatch         -> InvalidCredentials
  UnknownResetToken, ResetTokenExpired   -> InvalidOrExpiredResetToken

The internal kinds exist so logs keep the real reason. They must never reach
an exception handler: the sequencers pass them through public_error() first.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every failure the auth core reports upward."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


# ---------------------------------------------------------------------------
# Client-facing authentication failures (401)
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password."


class NoSessionToken(AuthError):
    status_code = 401
    code = "no_session_token"
    message = "No session token."


class InvalidSessionToken(AuthError):
    status_code = 401
    code = "invalid_session_token"
    message = "Invalid session token."


class ExpiredSessionToken(AuthError):
    status_code = 401
    code = "expired_session_token"
    message = "Session expired. Please log in again."


class InvalidToken(AuthError):
    status_code = 401
    code = "invalid_token"
    message = "Invalid token."


class UserNotFound(AuthError):
    status_code = 401
    code = "user_not_found"
    message = "User not found."


class InvalidOrExpiredResetToken(AuthError):
    status_code = 401
    code = "invalid_reset_token"
    message = "Invalid or expired reset token."


# ---------------------------------------------------------------------------
# Authorization and conflicts
# ---------------------------------------------------------------------------


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Insufficient permissions."


class EmailAlreadyRegistered(AuthError):
    status_code = 409
    code = "conflict"
    message = "A user with that email already exists."


# ---------------------------------------------------------------------------
# Internal failures (500) -- detail stays in server logs
# ---------------------------------------------------------------------------


class RoleResolutionError(AuthError):
    """A user references a role that does not exist (data integrity)."""


class SigningError(AuthError):
    """The signing secret is unavailable or the token could not be signed."""


class RandomSourceError(AuthError):
    """The OS could not supply cryptographically secure random bytes."""


class EmailDeliveryError(AuthError):
    """The email transport refused or failed to deliver a message."""


class AuthWiringError(AuthError):
    """A permission gate ran without the authenticator ahead of it."""


# ---------------------------------------------------------------------------
# Internal-only kinds
# ---------------------------------------------------------------------------


class UnknownEmail(AuthError):
    pass


class PasswordMismatch(AuthError):
    pass


class UnknownResetToken(AuthError):
    pass


class ResetTokenExpired(AuthError):
    pass


_PUBLIC_KIND: dict[type[AuthError], type[AuthError]] = {
    UnknownEmail: InvalidCredentials,
    PasswordMismatch: InvalidCredentials,
    UnknownResetToken: InvalidOrExpiredResetToken,
    ResetTokenExpired: InvalidOrExpiredResetToken,
}


def public_error(exc: AuthError) -> AuthError:
    """Return the error a client is allowed to see for exc.

    Internal kinds become their collapsed public kind; every other error is
    returned unchanged.
    """
    public_cls = _PUBLIC_KIND.get(type(exc))
    if public_cls is None:
        return exc
    return public_cls()
