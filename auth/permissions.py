"""
auth/permissions.py -- Capability checks on an already-resolved identity.

No database access: everything here operates on the Role the request
authenticator attached to the request.

authorize() is the general gate. has_access_to_type() is the narrower rule
handlers apply inline when writing an attendance-style sub-record whose kind
decides which capability is needed:

  lesson                 -> access_curator or access_settings
  freeze, prolongation   -> access_manager or access_settings
  anything else          -> denied

Layer rule: stdlib + auth/ only.
"""

from __future__ import annotations

from auth.errors import Forbidden
from auth.models import Capability, Role

_TYPE_CAPABILITIES: dict[str, tuple[Capability, ...]] = {
    "lesson": (Capability.ACCESS_CURATOR, Capability.ACCESS_SETTINGS),
    "freeze": (Capability.ACCESS_MANAGER, Capability.ACCESS_SETTINGS),
    "prolongation": (Capability.ACCESS_MANAGER, Capability.ACCESS_SETTINGS),
}


def authorize(role: object, capability: Capability | str) -> None:
    """Raise Forbidden unless role is a Role granting capability."""
    if not isinstance(role, Role) or not role.grants(capability):
        raise Forbidden()


def has_access_to_type(role: Role | None, record_type: str) -> bool:
    if role is None:
        return False
    required = _TYPE_CAPABILITIES.get(record_type)
    if required is None:
        return False
    return any(role.grants(cap) for cap in required)
