"""
auth/tokens.py -- Password hashing and the token issuer.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens carry sub (user id as a
       string), role, role_id and exp, exactly access_token_ttl_seconds after
       issue. They are never stored; signature + expiry are the whole proof.
       Expiry is checked against the injected clock rather than jose's wall
       clock so tests can move time deterministically.

  Refresh tokens: b64url(user_id) + "." + b64url(HMAC-SHA256(SECRET_KEY, 32
       random bytes)). The session store is keyed directly by this opaque
       string; without SECRET_KEY nobody can mint one that looks plausible.

  Reset tokens: secrets.token_hex(16). No structure on purpose -- the value
       means nothing without the users-table lookup.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in the login sequencer so response time
       does not reveal whether an email exists [C1].

The issuer receives its secret from the Settings object at construction. It
never reads configuration on its own.

Layer rule: no imports from api/. core/ is allowed for the Settings type only.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidToken, RandomSourceError, SigningError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("schooladmin.auth")

_ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


PASSWORD_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes, so longer passwords are refused
    outright instead of being hashed in truncated form. The API models and
    the CLI reject them before they get here.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A password over 72 bytes can never have been stored, so it never matches.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones [C1].
_DUMMY_HASH: str = hash_password("schooladmin_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded.

    Called when the email is unknown so that path costs the same as a wrong
    password [C1].
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies the three token kinds.

    Usage:
        issuer = TokenIssuer.from_settings(settings)
        token, expires_at = issuer.issue_access_token(user_id=1, role_id=1, role_name="admin")
        claims = issuer.decode_access_token(token)
    """

    def __init__(self, secret_key: str, access_ttl: timedelta = timedelta(hours=1), clock: Clock = utc_now) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> TokenIssuer:
        return cls(
            secret_key=settings.secret_key,
            access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: int, role_id: int, role_name: str) -> tuple[str, datetime]:
        """Return (signed JWT, absolute expiry).

        Raises SigningError if the secret is missing or jose cannot sign.
        """
        if not self._secret_key:
            raise SigningError("Signing secret is not configured.")
        expires_at = self._clock() + self.access_ttl
        payload = {
            "sub": str(user_id),
            "role": role_name,
            "role_id": role_id,
            "exp": int(expires_at.timestamp()),
        }
        try:
            token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            raise SigningError("Access token could not be signed.") from exc
        return token, expires_at

    def decode_access_token(self, token: str) -> dict:
        """Verify signature and expiry; return the claims.

        Raises InvalidToken on a bad signature, a malformed token, a missing
        or non-numeric exp, an expired token, or a missing sub claim.
        """
        if not self._secret_key:
            raise SigningError("Signing secret is not configured.")
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidToken() from exc
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise InvalidToken()
        if self._clock().timestamp() >= exp:
            raise InvalidToken()
        if not isinstance(claims.get("sub"), str):
            raise InvalidToken()
        return claims

    def subject_user_id(self, token: str) -> int:
        """Decode token and return its subject as a user id."""
        claims = self.decode_access_token(token)
        try:
            return int(claims["sub"])
        except ValueError as exc:
            raise InvalidToken() from exc

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(self, user_id: int) -> str:
        """Return b64url(user_id) + "." + b64url(HMAC(secret, 32 random bytes)).

        Padding is stripped so the value is cookie-safe without quoting.
        """
        if not self._secret_key:
            raise SigningError("Signing secret is not configured.")
        try:
            nonce = secrets.token_bytes(32)
        except (OSError, NotImplementedError) as exc:
            raise RandomSourceError("Secure random source unavailable.") from exc
        signature = hmac.new(self._secret_key.encode("utf-8"), nonce, hashlib.sha256).digest()
        encoded_id = base64.urlsafe_b64encode(str(user_id).encode("ascii")).decode("ascii").rstrip("=")
        encoded_sig = base64.urlsafe_b64encode(signature).decode("ascii").rstrip("=")
        return f"{encoded_id}.{encoded_sig}"

    # ------------------------------------------------------------------
    # Reset tokens
    # ------------------------------------------------------------------

    @staticmethod
    def issue_reset_token() -> str:
        """Return 16 secure random bytes as 32 hex characters."""
        try:
            return secrets.token_hex(16)
        except (OSError, NotImplementedError) as exc:
            raise RandomSourceError("Secure random source unavailable.") from exc


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, refresh_token: str, expires_at: datetime, secure: bool = False) -> None:
    """Write the refresh token as the session_token cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    path="/": sent with every request to the service.
    expires: matches the session row's expires_at so both lapse together.
    secure: only when SECURE_COOKIES=true. No SameSite attribute is emitted.
    """
    response.set_cookie(
        "session_token",
        value=refresh_token,
        expires=expires_at.astimezone(timezone.utc),
        path="/",
        httponly=True,
        secure=secure,
        samesite=None,
    )


def clear_session_cookie(response, secure: bool = False) -> None:
    """Expire the session_token cookie immediately."""
    response.delete_cookie("session_token", path="/", httponly=True, secure=secure, samesite=None)
