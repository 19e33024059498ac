"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and
authorization.

Request authenticator
  Identity is resolved by an ordered list of strategies, tried in priority
  order. The first strategy that applies to the request owns the outcome --
  later strategies are never consulted, even if the first one fails:

    1. BearerTokenStrategy   applies when an Authorization header is present.
                             Stateless: signature + expiry, no store call.
    2. SessionCookieStrategy applies always (fallback). Looks up the
                             session_token cookie in the session store.

  So a bearer token wins over a cookie when both are sent. Both converge on
  a user id; the user and role are then loaded from the stores (no caching,
  so a deleted user or a logout takes effect on the very next request) and
  an Identity is attached to request.state.identity.

Permission gate
  require_permission(cap) reads request.state.identity. It must be listed
  after authenticate in the dependency chain; a missing identity is a wiring
  defect (AuthWiringError, 500), not a client error.

Layer rule: may import fastapi (Depends/Request) because this module is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request

from auth.errors import AuthError, AuthWiringError, InvalidSessionToken, NoSessionToken, UserNotFound
from auth.models import Capability, Identity
from auth.permissions import authorize
from auth.tokens import utc_now

logger = logging.getLogger("schooladmin.auth")

SESSION_COOKIE = "session_token"
_BEARER_PREFIX = "Bearer "


@dataclass
class ResolvedSubject:
    user_id: int
    is_session_auth: bool


class BearerTokenStrategy:
    """Authorization: Bearer <access token>."""

    def applies(self, request: Request) -> bool:
        return bool(request.headers.get("Authorization"))

    def resolve(self, request: Request) -> ResolvedSubject:
        header = request.headers.get("Authorization", "")
        token = header[len(_BEARER_PREFIX) :] if header.startswith(_BEARER_PREFIX) else header
        user_id = request.app.state.issuer.subject_user_id(token.strip())
        return ResolvedSubject(user_id=user_id, is_session_auth=False)


class SessionCookieStrategy:
    """session_token cookie holding a refresh token."""

    def applies(self, request: Request) -> bool:
        return True

    def resolve(self, request: Request) -> ResolvedSubject:
        refresh_token = request.cookies.get(SESSION_COOKIE)
        if not refresh_token:
            raise NoSessionToken()
        sessions = request.app.state.session_store
        found = sessions.get_by_token(refresh_token)
        if found is None:
            raise InvalidSessionToken()
        session, _role_id = found
        clock = getattr(request.app.state, "clock", utc_now)
        if session.is_expired(clock()):
            sessions.delete_by_token(refresh_token)
            raise InvalidSessionToken()
        return ResolvedSubject(user_id=session.user_id, is_session_auth=True)


DEFAULT_STRATEGIES = (BearerTokenStrategy(), SessionCookieStrategy())


def authenticate(request: Request) -> Identity:
    """Resolve and attach the caller's Identity, or raise a 401-class AuthError.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(authenticate)): ...
    """
    strategies = getattr(request.app.state, "auth_strategies", DEFAULT_STRATEGIES)
    strategy = next(s for s in strategies if s.applies(request))
    try:
        subject = strategy.resolve(request)
    except AuthError as exc:
        logger.warning("%s rejected request to %s: %s", type(strategy).__name__, request.url.path, type(exc).__name__)
        raise

    user = request.app.state.user_store.get_by_id(subject.user_id)
    if user is None:
        logger.warning("Authenticated subject user_id=%s no longer exists", subject.user_id)
        raise UserNotFound()

    role = request.app.state.auth_service.resolve_role(user.role_id, user_id=user.id)

    identity = Identity(user=user, role=role, is_session_auth=subject.is_session_auth)
    request.state.identity = identity
    logger.debug("User authenticated user_id=%s session_auth=%s", user.id, subject.is_session_auth)
    return identity


def require_permission(capability: Capability | str) -> Callable[[Request], Identity]:
    """Build a gate dependency for one capability.

    Use as a route-group dependency, after authenticate:
        router = APIRouter(dependencies=[Depends(authenticate), Depends(require_permission(Capability.ACCESS_SETTINGS))])
    """

    def gate(request: Request) -> Identity:
        identity = getattr(request.state, "identity", None)
        if identity is None:
            logger.error("Permission gate '%s' ran before the authenticator on %s", capability, request.url.path)
            raise AuthWiringError("Authentication context missing.")
        authorize(getattr(identity, "role", None), capability)
        return identity

    return gate
