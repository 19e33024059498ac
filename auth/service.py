"""
auth/service.py -- Login, refresh and logout sequencing.

AuthService composes the three stores and the token issuer. Each public
method is one flow; every store write inside a flow is a single statement or
transaction, so a request cancelled mid-flow never leaves half a session
behind. Nothing here retries: store, signing and randomness failures go
straight up to the caller.

Flows:
  login(email, password)
    user by email -> bcrypt check -> role by id -> access + refresh token
    -> upsert session (7 days) -> LoginResult
  refresh(refresh_token)
    session by token (joined with role id) -> expiry check -> new access +
    refresh token -> overwrite session (rotate-on-use) -> RefreshResult
  logout(refresh_token)
    delete session by token (absent token is fine)

Unknown email and wrong password collapse into InvalidCredentials via
public_error(); the log line keeps the real reason [C1].

Concurrency: two refreshes racing for the same user both succeed at the
store level; the later write decides the live refresh token and the other
client's token fails on its next use. No optimistic locking is applied.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from auth.errors import (
    ExpiredSessionToken,
    InvalidCredentials,
    InvalidSessionToken,
    NoSessionToken,
    PasswordMismatch,
    RoleResolutionError,
    UnknownEmail,
    public_error,
)
from auth.models import Role, Session, User
from auth.store import RoleStore, SessionStore, UserStore
from auth.tokens import Clock, TokenIssuer, burn_password_check, hash_password, utc_now, verify_password

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("schooladmin.auth")


@dataclass
class LoginResult:
    user_id: int
    role_name: str
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    session_expires_at: datetime


@dataclass
class RefreshResult:
    user_id: int
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    session_expires_at: datetime


class AuthService:
    def __init__(
        self,
        users: UserStore,
        roles: RoleStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        session_ttl: timedelta = timedelta(days=7),
        clock: Clock = utc_now,
    ) -> None:
        self.users = users
        self.roles = roles
        self.sessions = sessions
        self.issuer = issuer
        self.session_ttl = session_ttl
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        users: UserStore,
        roles: RoleStore,
        sessions: SessionStore,
        issuer: TokenIssuer,
        clock: Clock = utc_now,
    ) -> AuthService:
        return cls(
            users,
            roles,
            sessions,
            issuer,
            session_ttl=timedelta(seconds=settings.session_ttl_seconds),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        try:
            user = self._check_credentials(email, password)
        except (UnknownEmail, PasswordMismatch) as exc:
            logger.warning("Login failed: %s", type(exc).__name__)
            raise public_error(exc) from None

        role = self.resolve_role(user.role_id, user_id=user.id)
        access_token, access_expires_at = self.issuer.issue_access_token(user.id, role.id, role.name)
        refresh_token = self.issuer.issue_refresh_token(user.id)

        session = Session(
            user_id=user.id,
            refresh_token=refresh_token,
            expires_at=self._clock() + self.session_ttl,
        )
        self.sessions.save(session)

        logger.info("Successful login user_id=%s role=%s", user.id, role.name)
        return LoginResult(
            user_id=user.id,
            role_name=role.name,
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh_token,
            session_expires_at=session.expires_at,
        )

    def refresh(self, refresh_token: str | None) -> RefreshResult:
        if not refresh_token:
            logger.warning("Refresh attempt without session token")
            raise NoSessionToken()

        found = self.sessions.get_by_token(refresh_token)
        if found is None:
            logger.warning("Refresh with unknown session token")
            raise InvalidSessionToken()
        session, role_id = found

        now = self._clock()
        if session.is_expired(now):
            logger.warning("Refresh with expired session user_id=%s", session.user_id)
            self.sessions.delete_by_token(refresh_token)
            raise ExpiredSessionToken()

        role = self.resolve_role(role_id, user_id=session.user_id)
        access_token, access_expires_at = self.issuer.issue_access_token(session.user_id, role.id, role.name)
        new_refresh_token = self.issuer.issue_refresh_token(session.user_id)

        rotated = Session(
            user_id=session.user_id,
            refresh_token=new_refresh_token,
            expires_at=now + self.session_ttl,
        )
        self.sessions.save(rotated)

        logger.info("Tokens refreshed user_id=%s", session.user_id)
        return RefreshResult(
            user_id=session.user_id,
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=new_refresh_token,
            session_expires_at=rotated.expires_at,
        )

    def logout(self, refresh_token: str | None) -> None:
        if not refresh_token:
            logger.warning("Logout attempt without session token")
            raise NoSessionToken()
        deleted = self.sessions.delete_by_token(refresh_token)
        logger.info("Logout (session %s)", "deleted" if deleted else "already absent")

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """Replace the password of an already-authenticated user.

        Any pending reset token is consumed by the same write.
        """
        if not verify_password(current_password, user.password_hash):
            logger.warning("Password change rejected user_id=%s", user.id)
            raise InvalidCredentials()
        self.users.update_password(user.id, hash_password(new_password))
        logger.info("Password changed user_id=%s", user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def resolve_role(self, role_id: int, user_id: int | None = None) -> Role:
        role = self.roles.get_by_id(role_id)
        if role is None:
            logger.error("Role %s referenced by user_id=%s does not exist", role_id, user_id)
            raise RoleResolutionError("Couldn't find role.")
        return role

    def _check_credentials(self, email: str, password: str) -> User:
        """Return the user or raise an internal credential failure.

        Always runs bcrypt whether or not the email exists [C1].
        """
        user = self.users.get_by_email(email)
        if user is None:
            burn_password_check(password)
            raise UnknownEmail()
        if not verify_password(password, user.password_hash):
            raise PasswordMismatch()
        return user
