"""
auth/store.py -- SQLAlchemy Core persistence for users and roles.

Pattern: Repository + Data Mapper. UserStore and RoleStore are the
repositories (the UserDirectory and RoleDirectory ports); _row_to_user /
_row_to_role are the mappers. The service and the guard never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Usernames and emails are lowercased on every write and every lookup, and
  both columns carry UNIQUE constraints. The service checks existence first
  for a friendly 409, but the constraint is what actually holds under a race:
  a concurrent duplicate insert raises IntegrityError, which the service also
  maps to USER_ALREADY_EXISTS [M1].

Timestamps are stored as ISO 8601 UTC strings with microsecond precision.
One fixed format means lexicographic order equals chronological order, so
range predicates (expires_at < now) work as plain string comparisons.

Engines: one store may own its engine (db_url) or share one passed in by the
composition root (auth/context.py). Only an owning store disposes its engine
on close().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.permissions import DEFAULT_ROLES, DEFAULT_USER_ROLE_ID
from core.config import utcnow

DEFAULT_DB_URL = "sqlite:///tokenguard_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("password_salt", Text, nullable=False),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("permissions", Text, nullable=False),  # JSON array, order preserved
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("role_id", String(64), ForeignKey("roles.id"), nullable=False),
    Column("assigned_at", String(32), nullable=False),
    PrimaryKeyConstraint("user_id", "role_id"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed while a writer holds the lock. Set per-connection
    because SQLite PRAGMAs are not inherited by new pooled connections.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str = DEFAULT_DB_URL, timeout_seconds: float = 5.0) -> Engine:
    """Engine shared by the auth stores.

    For SQLite, timeout_seconds doubles as the busy timeout: a writer waiting
    on another writer's lock gives up after that long and the driver raises
    OperationalError, which the service reports as an infrastructure failure.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize(value: str) -> str:
    return value.strip().lower()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///auth.db")
        user = store.save(User(...))
        store.find_by_username("Alice")   # case-insensitive
        store.close()
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        *,
        engine: Engine | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine or create_store_engine(db_url, timeout_seconds)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: str) -> User | None:
        return self._find_one(_users.c.id == user_id)

    def find_by_username(self, username: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        return self._find_one(_users.c.username == _normalize(username))

    def find_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        return self._find_one(_users.c.email == _normalize(email))

    def exists_by_username(self, username: str) -> bool:
        return self._exists(_users.c.username == _normalize(username))

    def exists_by_email(self, email: str) -> bool:
        return self._exists(_users.c.email == _normalize(email))

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def list_active(self) -> list[User]:
        """All active users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.is_active == 1).order_by(_users.c.username)
            ).fetchall()
            return [_row_to_user(r, _role_ids(conn, r.id)) for r in rows]

    def _find_one(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, _role_ids(conn, row.id))

    def _exists(self, clause) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(clause).limit(1)).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, user: User) -> User:
        """Insert a new user together with its role links in one transaction.

        An empty id is replaced with a fresh UUID; an empty role_ids gets the
        default USER role. Raises sqlalchemy.exc.IntegrityError if the username
        or email is already taken.
        """
        user.id = user.id or str(uuid.uuid4())
        user.username = _normalize(user.username)
        user.email = _normalize(user.email)
        user.role_ids = tuple(dict.fromkeys(user.role_ids)) or (DEFAULT_USER_ROLE_ID,)
        assigned_at = to_iso(utcnow())
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    password_salt=user.password_salt,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    created_at=to_iso(user.created_at),
                    last_login_at=to_iso(user.last_login_at),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.execute(
                _user_roles.insert(),
                [{"user_id": user.id, "role_id": role_id, "assigned_at": assigned_at} for role_id in user.role_ids],
            )
            conn.commit()
        return user

    def update(self, user: User) -> bool:
        """Persist the mutable fields of an existing user. Role links are managed by RoleStore.

        Returns True if a row was updated, False if the id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user.id)
                .values(
                    username=_normalize(user.username),
                    email=_normalize(user.email),
                    password_hash=user.password_hash,
                    password_salt=user.password_salt,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    last_login_at=to_iso(user.last_login_at),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str, when: datetime | None = None) -> bool:
        """Stamp last_login_at. Called on every successful password login."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(last_login_at=to_iso(when or utcnow()))
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate(self, user_id: str) -> bool:
        """Soft-delete: the row stays, logins and token checks stop accepting it."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(is_active=0))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleStore:
    """Repository for roles and user-role links.

    The default roles (auth/permissions.py) are inserted on construction if
    missing. Existing rows are left alone so operator edits survive restarts.
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        *,
        engine: Engine | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine or create_store_engine(db_url, timeout_seconds)
        metadata.create_all(self.engine)
        self._ensure_default_roles()

    def _ensure_default_roles(self) -> None:
        with self.engine.connect() as conn:
            existing = set(conn.execute(select(_roles.c.id)).scalars())
            missing = [role for role in DEFAULT_ROLES if role.id not in existing]
            if not missing:
                return
            try:
                conn.execute(_roles.insert(), [_role_values(role) for role in missing])
                conn.commit()
            except IntegrityError:
                # Another process seeded them first.
                conn.rollback()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, role_id: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_user_roles(self, user_id: str) -> list[Role]:
        """Active roles linked to user_id, ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _roles.select()
                .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
                .where((_user_roles.c.user_id == user_id) & (_roles.c.is_active == 1))
                .order_by(_roles.c.name)
            ).fetchall()
        return [_row_to_role(r) for r in rows]

    def get_user_permissions(self, user_id: str) -> frozenset[str]:
        """Union of the permissions of every active role the user holds."""
        return frozenset(p for role in self.get_user_roles(user_id) for p in role.permissions)

    def user_has_permission(self, user_id: str, permission: str) -> bool:
        return permission in self.get_user_permissions(user_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def assign(self, user_id: str, role_id: str) -> bool:
        """Link role_id to user_id. Returns False if the link already existed."""
        with self.engine.connect() as conn:
            try:
                conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id, assigned_at=to_iso(utcnow())))
                conn.commit()
            except IntegrityError:
                conn.rollback()
                return False
        return True

    def remove(self, user_id: str, role_id: str) -> bool:
        """Unlink role_id from user_id. Returns False if there was no such link."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _role_ids(conn: Connection, user_id: str) -> tuple[str, ...]:
    rows = conn.execute(
        select(_user_roles.c.role_id).where(_user_roles.c.user_id == user_id).order_by(_user_roles.c.role_id)
    )
    return tuple(rows.scalars())


def _row_to_user(row, role_ids: tuple[str, ...]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        password_salt=row.password_salt,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=from_iso(row.created_at),
        last_login_at=from_iso(row.last_login_at),
        is_active=bool(row.is_active),
        role_ids=role_ids,
    )


def _role_values(role: Role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "permissions": json.dumps(list(role.permissions)),
        "is_active": 1 if role.is_active else 0,
    }


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description or "",
        permissions=tuple(json.loads(row.permissions or "[]")),
        is_active=bool(row.is_active),
    )
