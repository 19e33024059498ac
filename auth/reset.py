"""
auth/reset.py -- Password reset sequencing.

request_reset(email)
  Unknown email: nothing is generated or stored, and the caller returns the
  same message as for a known email (no account enumeration).
  Known email: 16-byte hex token, 30 minute expiry, both stored on the user
  row, then the token is mailed. A mail failure surfaces as
  EmailDeliveryError; the stored token stays and the user must ask again.

set_new_password(reset_token, new_password)
  Wrong token and expired token both become InvalidOrExpiredResetToken.
  The new hash and the cleared token fields are written by one UPDATE, so a
  consumed token can never authenticate a second reset.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from auth.errors import ResetTokenExpired, UnknownResetToken, public_error
from auth.mailer import EmailSender, redact_email
from auth.models import User
from auth.store import UserStore
from auth.tokens import Clock, TokenIssuer, hash_password, utc_now

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("schooladmin.auth.reset")

RESET_REQUESTED_MESSAGE = "If this email exists, a reset link has been sent."
RESET_EMAIL_SUBJECT = "Password Reset"


class PasswordResetService:
    def __init__(
        self,
        users: UserStore,
        sender: EmailSender,
        token_ttl: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
    ) -> None:
        self.users = users
        self.sender = sender
        self.token_ttl = token_ttl
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, users: UserStore, sender: EmailSender, clock: Clock = utc_now
    ) -> PasswordResetService:
        return cls(users, sender, token_ttl=timedelta(seconds=settings.reset_token_ttl_seconds), clock=clock)

    def request_reset(self, email: str) -> str:
        """Start a reset for email. Returns the public message for every outcome."""
        user = self.users.get_by_email(email)
        if user is None:
            logger.info("Reset requested for unregistered email %s", redact_email(email))
            return RESET_REQUESTED_MESSAGE

        reset_token = TokenIssuer.issue_reset_token()
        expires_at = self._clock() + self.token_ttl
        self.users.set_reset_token(user.id, reset_token, expires_at)

        self.sender.send(user.email, RESET_EMAIL_SUBJECT, f"Your reset token: {reset_token}")
        logger.info("Reset token issued user_id=%s", user.id)
        return RESET_REQUESTED_MESSAGE

    def set_new_password(self, reset_token: str, new_password: str) -> None:
        try:
            user = self._find_live_holder(reset_token)
        except (UnknownResetToken, ResetTokenExpired) as exc:
            logger.warning("Reset token rejected: %s", type(exc).__name__)
            raise public_error(exc) from None

        self.users.update_password(user.id, hash_password(new_password))
        logger.info("Password reset completed user_id=%s", user.id)

    def _find_live_holder(self, reset_token: str) -> User:
        user = self.users.get_by_reset_token(reset_token)
        if user is None:
            raise UnknownResetToken()
        expires_at = user.reset_token_expires_at
        if expires_at is None or self._clock() >= expires_at:
            raise ResetTokenExpired()
        return user
