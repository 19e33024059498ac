"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore, RoleStore and SessionStore are
the repositories; the _row_to_* functions are the mappers. Sequencer and route
code never touches SQL directly.

All three repositories share one Engine (open_engine()) because session
lookups join users to fetch the owner's role id in the same round trip.

Security:
  All queries use bound parameters. No f-strings in SQL.

Invariants enforced here:
  - users.email is UNIQUE and always stored lower-cased (case-insensitive).
  - sessions.user_id is UNIQUE: SessionStore.save() is an explicit upsert
    keyed on user id, so a new login replaces the previous session instead
    of appending a second one. Concurrent writers for the same user are
    last-writer-wins; the loser's refresh token simply stops matching.
  - update_password() nulls reset_token and reset_token_expires_at in the
    same UPDATE statement as the new hash.
  - Role permissions are decoded to a dict[str, bool], never None.

Timestamps are ISO 8601 UTC strings, matching the rest of the schema.
No caching: every call is a database round trip.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import EmailAlreadyRegistered
from auth.models import Role, Session, User

logger = logging.getLogger("schooladmin.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("permissions", Text, nullable=False, server_default="{}"),  # JSON object of bools
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("full_name", String(255), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("password_hash", Text, nullable=False),
    Column("telephone", String(50), nullable=False, server_default=""),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("reset_token", String(64), unique=True),
    Column("reset_token_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("refresh_token", String(255), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def open_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure the schema exists.

    pool_pre_ping drops dead connections from the pool before a request
    borrows them; there is no retry on top of that.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def ping(engine: Engine) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database ping failed")
        return False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class RoleStore:
    """Repository for Role entities."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_by_id(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def create(self, role: Role) -> int:
        """Insert a role and return its id.

        Raises sqlalchemy.exc.IntegrityError if the name is already taken.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    permissions=json.dumps({k: bool(v) for k, v in role.permissions.items()}),
                )
            )
            return result.inserted_primary_key[0]

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id)).fetchall()
        return [_row_to_role(r) for r in rows]


class UserStore:
    """Repository for User entities, including inline reset-token state.

    Usage:
        users = UserStore(engine)
        uid = users.create_user(User(email="a@b.c", password_hash=hash_password("pw"), role_id=1))
        user = users.get_by_email("A@B.C")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its id.

        Raises EmailAlreadyRegistered if the (normalized) email exists.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        full_name=user.full_name,
                        email=normalize_email(user.email),
                        password_hash=user.password_hash,
                        telephone=user.telephone,
                        role_id=user.role_id,
                        created_at=_now_iso(),
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            if self.get_by_email(user.email) is not None:
                raise EmailAlreadyRegistered() from exc
            raise

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, reset_token: str) -> User | None:
        """Return the user holding reset_token, expired or not.

        Expiry is judged by the caller against its clock so that "unknown"
        and "expired" stay distinguishable in the logs.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.reset_token == reset_token)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, role_id: int | None = None) -> list[User]:
        query = _users.select().order_by(_users.c.id)
        if role_id is not None:
            query = query.where(_users.c.role_id == role_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_by_role(self, role_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role_id == role_id)
            ).scalar()
        return result or 0

    def update_profile(self, user_id: int, **fields) -> bool:
        """Update full_name, email or telephone. Returns False if user_id is unknown.

        Raises EmailAlreadyRegistered when the new email belongs to someone else.
        """
        allowed = {"full_name", "email", "telephone"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        if not fields:
            return self.get_by_id(user_id) is not None
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        except IntegrityError as exc:
            raise EmailAlreadyRegistered() from exc
        return result.rowcount > 0

    def update_password(self, user_id: int, password_hash: str) -> bool:
        """Write a new hash and consume any pending reset token in one statement."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, reset_token=None, reset_token_expires_at=None)
            )
        return result.rowcount > 0

    def set_reset_token(self, user_id: int, reset_token: str, expires_at: datetime) -> bool:
        """Store a pending reset token and its expiry on the user row."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_token=reset_token, reset_token_expires_at=_to_iso(expires_at))
            )
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and their session. Returns False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0


class SessionStore:
    """Repository for Session entities. One row per user at most."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def save(self, session: Session) -> None:
        """Create or replace the session row for session.user_id.

        Update-then-insert inside one transaction. If a concurrent login for
        the same user wins the insert race, the UNIQUE(user_id) violation is
        resolved by overwriting that row -- last writer wins.
        """
        values = {
            "refresh_token": session.refresh_token,
            "expires_at": _to_iso(session.expires_at),
        }
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_sessions.update().where(_sessions.c.user_id == session.user_id).values(**values))
                if result.rowcount == 0:
                    conn.execute(
                        _sessions.insert().values(user_id=session.user_id, created_at=_now_iso(), **values)
                    )
        except IntegrityError:
            with self.engine.begin() as conn:
                conn.execute(_sessions.update().where(_sessions.c.user_id == session.user_id).values(**values))

    def get_by_token(self, refresh_token: str) -> tuple[Session, int] | None:
        """Return (session, owner's role_id) for refresh_token, expired or not."""
        query = (
            select(
                _sessions.c.id,
                _sessions.c.user_id,
                _sessions.c.refresh_token,
                _sessions.c.expires_at,
                _sessions.c.created_at,
                _users.c.role_id,
            )
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.refresh_token == refresh_token)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        return _row_to_session(row), row.role_id

    def get_by_user(self, user_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.user_id == user_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_by_token(self, refresh_token: str) -> bool:
        """Delete the session holding refresh_token. Absent token is not an error."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.refresh_token == refresh_token))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _decode_permissions(raw: str | None) -> dict[str, bool]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.error("Role permissions column is not valid JSON; treating as empty")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): v is True for k, v in data.items()}


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, permissions=_decode_permissions(row.permissions))


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        full_name=row.full_name,
        email=row.email,
        password_hash=row.password_hash,
        telephone=row.telephone,
        role_id=row.role_id,
        reset_token=row.reset_token,
        reset_token_expires_at=_from_iso(row.reset_token_expires_at),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
    )
