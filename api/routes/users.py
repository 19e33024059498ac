"""
api/routes/users.py -- User administration endpoints under /settings.

Routes (all require authentication AND the access_settings capability):
  POST   /settings/users             -- create user (409 on duplicate email)
  GET    /settings/users             -- list users, optional ?role=<role id>
  GET    /settings/users/managers    -- users holding the manager role
  GET    /settings/users/curators    -- users holding the curator role
  GET    /settings/users/{id}        -- one user (404)
  PUT    /settings/users/{id}        -- update name/email/telephone (404, 409)
  DELETE /settings/users/{id}        -- delete user and their session (404)

The whole router shares one dependency chain: authenticate first, then the
permission gate. The gate only reads what authenticate attached.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import UserCreate, UserResponse, UserUpdate
from auth.dependencies import authenticate, require_permission
from auth.models import Capability, Identity, User
from auth.seed import CURATOR_ROLE, MANAGER_ROLE
from auth.store import RoleStore, UserStore
from auth.tokens import hash_password

logger = logging.getLogger("schooladmin.api.users")

router = APIRouter(
    prefix="/settings/users",
    dependencies=[Depends(authenticate), Depends(require_permission(Capability.ACCESS_SETTINGS))],
)


@router.post("", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create a user account with the given role."""
    user_store: UserStore = request.app.state.user_store
    role_store: RoleStore = request.app.state.role_store

    if role_store.get_by_id(body.role_id) is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_role", "message": "Role does not exist."},
        )

    user_id = user_store.create_user(
        User(
            full_name=body.full_name,
            email=body.email,
            telephone=body.telephone,
            password_hash=hash_password(body.password),
            role_id=body.role_id,
        )
    )
    logger.info("User created user_id=%s role_id=%s", user_id, body.role_id)
    return _user_to_response(user_store.get_by_id(user_id))


@router.get("", response_model=list[UserResponse])
def list_users(request: Request, role: Optional[int] = Query(default=None, gt=0)) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users(role_id=role)]


@router.get("/managers", response_model=list[UserResponse])
def list_managers(request: Request) -> list[UserResponse]:
    return _list_by_role_name(request, MANAGER_ROLE)


@router.get("/curators", response_model=list[UserResponse])
def list_curators(request: Request) -> list[UserResponse]:
    return _list_by_role_name(request, CURATOR_ROLE)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise _not_found()
    return _user_to_response(user)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(request: Request, user_id: int, body: UserUpdate) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    updates = body.model_dump(exclude_none=True)
    if not user_store.update_profile(user_id, **updates):
        raise _not_found()
    logger.info("User updated user_id=%s fields=%s", user_id, sorted(updates))
    return _user_to_response(user_store.get_by_id(user_id))


@router.delete("/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int, identity: Identity = Depends(authenticate)) -> Response:
    """Delete a user. Admins cannot delete their own account."""
    if user_id == identity.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    user_store: UserStore = request.app.state.user_store
    if not user_store.delete_user(user_id):
        raise _not_found()
    logger.info("User deleted user_id=%s by user_id=%s", user_id, identity.user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _list_by_role_name(request: Request, role_name: str) -> list[UserResponse]:
    role = request.app.state.role_store.get_by_name(role_name)
    if role is None:
        return []
    return [_user_to_response(u) for u in request.app.state.user_store.list_users(role_id=role.id)]


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        full_name=user.full_name,
        email=user.email,
        telephone=user.telephone,
        role_id=user.role_id,
        created_at=user.created_at or "",
    )
