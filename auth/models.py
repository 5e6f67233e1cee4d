"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, near-zero logic). Dataclasses own
the domain shape; stores, the service, and the guard do the work. The only
methods here are read-only predicates over a single instance (is the token
still live, does the context hold a permission).

All timestamps are timezone-aware UTC datetimes. The stores convert to and
from ISO 8601 strings at the persistence boundary.

Layer rule: no imports from api/. auth/ may import from core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from core.config import utcnow


@dataclass
class User:
    """A registered identity.

    username and email are stored lowercase; lookups normalise their input the
    same way, so uniqueness is case-insensitive. password_hash/password_salt
    never leave the auth package -- routes receive PublicUser instead.
    """

    id: str
    username: str
    email: str
    password_hash: str
    password_salt: str
    created_at: datetime
    first_name: str | None = None
    last_name: str | None = None
    last_login_at: datetime | None = None
    is_active: bool = True
    role_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Role:
    """A named bundle of permissions.

    Duplicate permissions are dropped on construction; the first occurrence
    keeps its position.
    """

    id: str
    name: str
    description: str = ""
    permissions: tuple[str, ...] = ()
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", tuple(dict.fromkeys(self.permissions)))

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


class TokenType(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"

    @property
    def claim(self) -> str:
        """Value carried in the token_type JWT claim ("access" / "refresh")."""
        return self.value.lower()


@dataclass
class AuthToken:
    """One ledger row: the record of a single issued token.

    token_value is the SHA-256 hex digest of the signed token, never the bearer
    string itself. used_at and revoked_at are terminal: at most one is ever
    set, and a row with either set is permanently inactive.
    """

    id: str
    user_id: str
    token_value: str
    token_type: TokenType
    issued_at: datetime
    expires_at: datetime
    used_at: datetime | None = None
    revoked_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.is_used and not self.is_revoked and not self.is_expired(now)


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a signed token."""

    user_id: str
    username: str
    email: str
    first_name: str | None
    last_name: str | None
    token_type: str
    token_id: str
    issuer: str
    issued_at: datetime
    expires_at: datetime

    @property
    def is_access(self) -> bool:
        return self.token_type == TokenType.ACCESS.claim

    @property
    def is_refresh(self) -> bool:
        return self.token_type == TokenType.REFRESH.claim


@dataclass(frozen=True)
class SecurityContext:
    """Per-request identity and permission set. Never persisted.

    Build with SecurityContext.anonymous(...) or SecurityContext.authenticated(...)
    rather than the bare constructor so the authenticated flag and identity
    fields cannot disagree.
    """

    is_authenticated: bool = False
    user_id: str | None = None
    username: str | None = None
    email: str | None = None
    permissions: frozenset[str] = frozenset()
    ip_address: str | None = None
    user_agent: str | None = None
    authenticated_at: datetime | None = None

    @classmethod
    def anonymous(cls, ip_address: str | None = None, user_agent: str | None = None) -> SecurityContext:
        return cls(ip_address=ip_address, user_agent=user_agent)

    @classmethod
    def authenticated(
        cls,
        user: User,
        permissions: frozenset[str] | set[str],
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SecurityContext:
        return cls(
            is_authenticated=True,
            user_id=user.id,
            username=user.username,
            email=user.email,
            permissions=frozenset(permissions),
            ip_address=ip_address,
            user_agent=user_agent,
            authenticated_at=utcnow(),
        )

    def has_permission(self, permission: str) -> bool:
        return self.is_authenticated and permission in self.permissions

    def has_any_permission(self, *permissions: str) -> bool:
        return self.is_authenticated and any(p in self.permissions for p in permissions)

    def has_all_permissions(self, *permissions: str) -> bool:
        return self.is_authenticated and all(p in self.permissions for p in permissions)

    def is_owner(self, owner_id: str | None) -> bool:
        return self.is_authenticated and owner_id is not None and self.user_id == owner_id

    def can_access(self, owner_id: str | None, *admin_permissions: str) -> bool:
        """Owner of the resource, or holder of any of the overriding permissions."""
        return self.is_owner(owner_id) or self.has_any_permission(*admin_permissions)


@dataclass(frozen=True)
class PublicUser:
    """User view safe to hand to the transport layer (no hash, no salt)."""

    id: str
    username: str
    email: str
    first_name: str | None
    last_name: str | None
    created_at: datetime
    is_active: bool = True
    role_ids: tuple[str, ...] = ()

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at,
            is_active=user.is_active,
            role_ids=tuple(user.role_ids),
        )


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful login or refresh: the token pair plus who it belongs to."""

    user_id: str
    username: str
    email: str
    first_name: str | None
    last_name: str | None
    access_token: str
    refresh_token: str
    access_token_expires_in: int
    refresh_token_expires_in: int
    issued_at: datetime = field(default_factory=utcnow)
