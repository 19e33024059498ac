"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers). Stores and sequencers do the work;
the only behaviour here is the capability lookup on Role, which centralizes
the "absent key means no grant" rule so no handler ever indexes the raw
permissions mapping itself.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Capability(str, Enum):
    """Closed vocabulary of capability flags a role may grant."""

    ACCESS_SETTINGS = "access_settings"
    ACCESS_CURATOR = "access_curator"
    ACCESS_MANAGER = "access_manager"


@dataclass
class Role:
    """Named capability bundle.

    permissions is never None: the store mapper substitutes an empty dict for
    a NULL or malformed column, and any key not present reads as False.
    """

    name: str
    permissions: dict[str, bool] = field(default_factory=dict)
    id: int | None = None

    def grants(self, capability: Capability | str) -> bool:
        """Return True only when the capability key is present and exactly True."""
        key = capability.value if isinstance(capability, Capability) else capability
        return self.permissions.get(key) is True


@dataclass
class User:
    """A person who can log in to the admin backend.

    email is stored lower-cased so uniqueness and lookups are case-insensitive.
    reset_token / reset_token_expires_at are both None unless a password reset
    is pending.
    """

    email: str
    password_hash: str
    role_id: int
    full_name: str = ""
    telephone: str = ""
    id: int | None = None
    reset_token: str | None = None
    reset_token_expires_at: datetime | None = None
    created_at: str | None = None


@dataclass
class Session:
    """Server-side binding of a user to their single live refresh token."""

    user_id: int
    refresh_token: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class Identity:
    """What the request authenticator attaches to request.state.

    Downstream consumers (permission gate, handlers, audit logging) read this
    instead of re-querying the stores.
    """

    user: User
    role: Role
    is_session_auth: bool = False

    @property
    def user_id(self) -> int:
        return self.user.id  # type: ignore[return-value]
