"""
auth/seed.py -- Idempotent startup seeding of roles and the first admin.

Runs on every startup (api/main.py lifespan) and from `python main.py seed`.
Safe to repeat: existing roles are left untouched (a role's capability set
is not edited once users reference it), and an admin user is created only
when no user holds the admin role.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from auth.mailer import redact_email
from auth.models import Capability, Role, User
from auth.store import RoleStore, UserStore
from auth.tokens import hash_password

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("schooladmin.seed")

ADMIN_ROLE = "admin"
MANAGER_ROLE = "manager"
CURATOR_ROLE = "curator"

DEFAULT_ROLES: dict[str, dict[str, bool]] = {
    ADMIN_ROLE: {
        Capability.ACCESS_SETTINGS.value: True,
        Capability.ACCESS_CURATOR.value: True,
        Capability.ACCESS_MANAGER.value: True,
    },
    MANAGER_ROLE: {
        Capability.ACCESS_SETTINGS.value: False,
        Capability.ACCESS_CURATOR.value: False,
        Capability.ACCESS_MANAGER.value: True,
    },
    CURATOR_ROLE: {
        Capability.ACCESS_SETTINGS.value: False,
        Capability.ACCESS_CURATOR.value: True,
        Capability.ACCESS_MANAGER.value: False,
    },
}


def seed_roles(roles: RoleStore) -> dict[str, Role]:
    """Create any missing default role; return all default roles by name."""
    seeded: dict[str, Role] = {}
    for name, permissions in DEFAULT_ROLES.items():
        role = roles.get_by_name(name)
        if role is None:
            role_id = roles.create(Role(name=name, permissions=permissions))
            role = Role(id=role_id, name=name, permissions=dict(permissions))
            logger.info("Created role %s", name)
        seeded[name] = role
    return seeded


def seed_admin(users: UserStore, admin_role: Role, settings: Settings) -> int | None:
    """Create the initial admin if nobody holds the admin role.

    Returns the new user id, or None when an admin already exists.
    Raises RuntimeError if provisioning is needed but ADMIN_PASSWORD is unset.
    """
    if users.count_by_role(admin_role.id) > 0:
        return None
    if not settings.admin_password:
        raise RuntimeError("No admin user exists and ADMIN_PASSWORD is not set; cannot provision one.")
    user_id = users.create_user(
        User(
            full_name=settings.admin_name,
            email=settings.admin_email,
            password_hash=hash_password(settings.admin_password),
            telephone=settings.admin_phone,
            role_id=admin_role.id,
        )
    )
    logger.info("Admin user created %s", redact_email(settings.admin_email))
    return user_id


def seed_roles_and_admin(roles: RoleStore, users: UserStore, settings: Settings) -> None:
    seeded = seed_roles(roles)
    seed_admin(users, seeded[ADMIN_ROLE], settings)
