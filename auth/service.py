"""
auth/service.py -- Registration, login, refresh, logout, and token administration.

AuthService composes the password hasher, token signer, token ledger, user and
role stores, and the event sink. It is the only place that decides whether a
credential is accepted.

Concurrency:
  Every method is a coroutine. bcrypt work and every store call run on worker
  threads (asyncio.to_thread), so a slow hash never blocks the event loop and
  no lock is ever held across one. Store calls are additionally bounded by
  store_timeout (asyncio.wait_for); a timeout surfaces as STORE_TIMEOUT, an
  infrastructure failure, never as an authentication failure.

  Refresh is linearized by TokenLedger.rotate: the ledger row is checked first
  for a precise error, but only the conditional UPDATE decides. Of two
  concurrent refreshes with the same token exactly one gets a new pair. The
  new pair is inserted in that same transaction, so a failed insert leaves
  the presented refresh token unused.

  The access/refresh rows of a new pair are inserted in one transaction
  (save_all on login, rotate on refresh). A cancelled login never leaves half
  a pair in the ledger.

Anti-enumeration [C1]:
  Unknown identifier, wrong password, and inactive account all raise a
  ServiceError whose public_kind is INVALID_CREDENTIALS. An unknown identifier
  still burns one bcrypt verification so response time does not reveal it.
  Token problems (expired, revoked, used, malformed) all surface publicly as
  TOKEN_INVALID. The precise sub-reason is logged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import Callable
from datetime import timedelta
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.ledger import TokenLedger, token_reference
from auth.models import AuthResult, AuthToken, PublicUser, TokenType, User
from auth.passwords import PasswordHasher
from auth.signer import TokenSigner
from auth.store import RoleStore, UserStore
from core.config import utcnow
from core.errors import ErrorKind, ServiceError
from core.events import EventSink, TokenRefreshed, TokensRevoked, UserAuthenticated, UserLoggedOut, UserRegistered

logger = logging.getLogger("tokenguard.auth")

T = TypeVar("T")

_USERNAME_RE = re.compile(r"[a-z0-9_]{3,30}")
_EMAIL_RE = re.compile(r"[a-z0-9+_.-]+@[a-z0-9.-]+\.[a-z]{2,}")
_MAX_EMAIL_LENGTH = 255
_MAX_NAME_LENGTH = 50


def _denied(kind: ErrorKind, detail: str) -> ServiceError:
    logger.info("Authentication denied (%s): %s", kind.name, detail)
    return ServiceError(kind, detail)


class AuthService:
    """Authentication use cases over the auth stores.

    Usage:
        service = AuthService(users, roles, ledger, signer, hasher, events)
        public_user = await service.register("alice", "alice@example.com", "Abcdef12")
        result = await service.authenticate("alice", "Abcdef12", ip_address="10.0.0.1")
        result = await service.refresh_token(result.refresh_token)
        await service.logout(access_token=result.access_token, refresh_token=result.refresh_token)
    """

    def __init__(
        self,
        users: UserStore,
        roles: RoleStore,
        ledger: TokenLedger,
        signer: TokenSigner,
        hasher: PasswordHasher,
        events: EventSink,
        *,
        access_token_ttl: timedelta = timedelta(minutes=15),
        refresh_token_ttl: timedelta = timedelta(days=7),
        remember_me_refresh_token_ttl: timedelta = timedelta(days=30),
        store_timeout: float = 5.0,
    ) -> None:
        self.users = users
        self.roles = roles
        self.ledger = ledger
        self.signer = signer
        self.hasher = hasher
        self.events = events
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.remember_me_refresh_token_ttl = remember_me_refresh_token_ttl
        self.store_timeout = store_timeout

    # ------------------------------------------------------------------
    # Store calls
    # ------------------------------------------------------------------

    async def run_store(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking store call on a worker thread under the store timeout.

        IntegrityError is re-raised untouched so the caller can map it; every
        other SQLAlchemy failure becomes DATABASE_ERROR.
        """
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.store_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Store call %s timed out after %.1fs", getattr(fn, "__qualname__", fn), self.store_timeout)
            raise ServiceError(ErrorKind.STORE_TIMEOUT) from exc
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Store call %s failed", getattr(fn, "__qualname__", fn))
            raise ServiceError(ErrorKind.DATABASE_ERROR) from exc

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> PublicUser:
        """Create an account with the default USER role.

        Raises ServiceError(USER_ALREADY_EXISTS) if the username or email is
        taken (case-insensitively), or ServiceError(VALIDATION_ERROR) carrying
        every field problem at once.
        """
        username = (username or "").strip().lower()
        email = (email or "").strip().lower()

        if username and await self.run_store(self.users.exists_by_username, username):
            raise ServiceError(ErrorKind.USER_ALREADY_EXISTS, "Username already exists")
        if email and await self.run_store(self.users.exists_by_email, email):
            raise ServiceError(ErrorKind.USER_ALREADY_EXISTS, "Email already exists")

        field_errors = self._validate_registration(username, email, password, first_name, last_name)
        if field_errors:
            raise ServiceError(ErrorKind.VALIDATION_ERROR, "Registration data is invalid", field_errors)

        password_hash, salt = await asyncio.to_thread(self.hasher.hash_password, password)
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            email=email,
            password_hash=password_hash,
            password_salt=salt,
            created_at=utcnow(),
            first_name=first_name,
            last_name=last_name,
        )
        try:
            user = await self.run_store(self.users.save, user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same name or email.
            raise ServiceError(ErrorKind.USER_ALREADY_EXISTS, "User already exists") from exc

        logger.info("User registered: %s (%s)", user.username, user.id)
        self.events.publish(UserRegistered(user_id=user.id, username=user.username, email=user.email))
        return PublicUser.from_user(user)

    def _validate_registration(
        self,
        username: str,
        email: str,
        password: str | None,
        first_name: str | None,
        last_name: str | None,
    ) -> dict[str, str]:
        errors: dict[str, str] = {}
        if not _USERNAME_RE.fullmatch(username):
            errors["username"] = "Username must be 3-30 characters and contain only letters, numbers, and underscores"
        if len(email) > _MAX_EMAIL_LENGTH or not _EMAIL_RE.fullmatch(email):
            errors["email"] = "Invalid email address format"
        if not self.hasher.is_password_strong(password):
            errors["password"] = (
                "Password must be 8-128 characters and contain at least three of: "
                "uppercase letters, lowercase letters, digits, symbols"
            )
        for field, value in (("first_name", first_name), ("last_name", last_name)):
            if value is not None and not 1 <= len(value) <= _MAX_NAME_LENGTH:
                label = field.replace("_", " ").capitalize()
                errors[field] = f"{label} must be 1-{_MAX_NAME_LENGTH} characters"
        return errors

    # ------------------------------------------------------------------
    # Authenticate
    # ------------------------------------------------------------------

    async def authenticate(
        self,
        login_identifier: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        remember_me: bool = False,
    ) -> AuthResult:
        """Password login. An identifier containing "@" is looked up as an email, otherwise as a username."""
        identifier = (login_identifier or "").strip().lower()
        if "@" in identifier:
            user = await self.run_store(self.users.find_by_email, identifier)
        else:
            user = await self.run_store(self.users.find_by_username, identifier)

        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            await asyncio.to_thread(self.hasher.burn_verification, password)
            raise _denied(ErrorKind.INVALID_CREDENTIALS, f"unknown login identifier {identifier!r}")

        verified = await asyncio.to_thread(
            self.hasher.verify_password, password, user.password_hash, user.password_salt
        )
        if not verified:
            raise _denied(ErrorKind.INVALID_CREDENTIALS, f"wrong password for user {user.id}")
        if not user.is_active:
            raise _denied(ErrorKind.USER_INACTIVE, f"inactive user {user.id}")

        now = utcnow()
        await self.run_store(self.users.update_last_login, user.id, now)
        user.last_login_at = now

        result = await self._issue_pair(user, ip_address, user_agent, remember_me)
        logger.info("User %s authenticated from %s", user.id, ip_address or "unknown")
        self.events.publish(
            UserAuthenticated(user_id=user.id, username=user.username, ip_address=ip_address, user_agent=user_agent)
        )
        return result

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_token(
        self,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """Rotate a refresh token: consume it and issue a brand-new pair.

        The presented token can never be used again, whether this call wins or
        loses a concurrent race for it.
        """
        claims = self.signer.validate_token(refresh_token)
        if claims is None:
            expires_at = self.signer.get_token_expiration(refresh_token)
            if expires_at is not None and expires_at <= utcnow():
                raise _denied(ErrorKind.TOKEN_EXPIRED, "refresh token past its exp claim")
            raise _denied(ErrorKind.TOKEN_INVALID, "refresh token failed verification")
        if not claims.is_refresh:
            raise _denied(ErrorKind.TOKEN_INVALID, f"{claims.token_type} token presented for refresh")

        row = await self.run_store(self.ledger.find_by_token, token_reference(refresh_token))
        if row is None or row.token_type is not TokenType.REFRESH or row.user_id != claims.user_id:
            raise _denied(ErrorKind.TOKEN_INVALID, "refresh token has no matching ledger row")
        if row.is_revoked:
            raise _denied(ErrorKind.TOKEN_REVOKED, f"ledger row {row.id} revoked")
        if row.is_used:
            raise _denied(ErrorKind.TOKEN_INVALID, f"ledger row {row.id} already used")
        if row.is_expired():
            raise _denied(ErrorKind.TOKEN_EXPIRED, f"ledger row {row.id} expired")

        user = await self.run_store(self.users.find_by_id, row.user_id)
        if user is None:
            raise _denied(ErrorKind.TOKEN_INVALID, f"user {row.user_id} no longer exists")
        if not user.is_active:
            raise _denied(ErrorKind.USER_INACTIVE, f"inactive user {user.id}")

        rows, result = self._new_pair(user, ip_address, user_agent, remember_me=False)
        if not await self.run_store(self.ledger.rotate, row.id, rows):
            raise _denied(ErrorKind.TOKEN_INVALID, f"ledger row {row.id} consumed by a concurrent request")

        logger.info("Token refreshed for user %s", user.id)
        self.events.publish(TokenRefreshed(user_id=user.id, username=user.username, ip_address=ip_address))
        return result

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self, access_token: str | None = None, refresh_token: str | None = None) -> int:
        """Revoke the ledger rows of whichever tokens are presented. Returns how many were revoked.

        Unknown, already-used, and already-revoked tokens are ignored; logout
        itself never fails on token state.
        """
        revoked = 0
        user_id: str | None = None
        for raw in (access_token, refresh_token):
            if not raw:
                continue
            row = await self.run_store(self.ledger.find_by_token, token_reference(raw))
            if row is None:
                continue
            user_id = user_id or row.user_id
            if await self.run_store(self.ledger.revoke_token, row.id):
                revoked += 1
        logger.info("Logout for user %s revoked %d token(s)", user_id or "unknown", revoked)
        self.events.publish(UserLoggedOut(user_id=user_id, revoked=revoked))
        return revoked

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def _require_user(self, user_id: str) -> User:
        user = await self.run_store(self.users.find_by_id, user_id)
        if user is None:
            raise ServiceError(ErrorKind.USER_NOT_FOUND, f"User not found: {user_id}")
        return user

    async def revoke_all_user_tokens(self, user_id: str) -> int:
        """Revoke every active token of user_id. Any refresh token issued before this call stops working."""
        await self._require_user(user_id)
        revoked = await self.run_store(self.ledger.revoke_all_user_tokens, user_id)
        logger.info("Revoked %d token(s) for user %s", revoked, user_id)
        self.events.publish(TokensRevoked(user_id=user_id, revoked=revoked))
        return revoked

    async def list_user_tokens(self, user_id: str) -> list[AuthToken]:
        await self._require_user(user_id)
        return await self.run_store(self.ledger.find_all_tokens_for_user, user_id)

    async def assign_role(self, user_id: str, role_id: str) -> bool:
        """Give user_id the role. Returns False if the user already had it."""
        await self._require_user(user_id)
        if await self.run_store(self.roles.find_by_id, role_id) is None:
            raise ServiceError(ErrorKind.ROLE_NOT_FOUND, f"Role not found: {role_id}")
        return await self.run_store(self.roles.assign, user_id, role_id)

    async def remove_role(self, user_id: str, role_id: str) -> bool:
        """Take the role away from user_id. Returns False if the user did not have it."""
        await self._require_user(user_id)
        if await self.run_store(self.roles.find_by_id, role_id) is None:
            raise ServiceError(ErrorKind.ROLE_NOT_FOUND, f"Role not found: {role_id}")
        return await self.run_store(self.roles.remove, user_id, role_id)

    async def cleanup_tokens(self, used_retention: timedelta) -> tuple[int, int]:
        """Delete expired rows, then used rows older than used_retention. Returns (expired, used)."""
        expired = await self.run_store(self.ledger.cleanup_expired_tokens)
        used = await self.run_store(self.ledger.delete_used_tokens_older_than, utcnow() - used_retention)
        logger.info("Token cleanup removed %d expired and %d used row(s)", expired, used)
        return expired, used

    # ------------------------------------------------------------------
    # Token issuance
    # ------------------------------------------------------------------

    async def _issue_pair(
        self,
        user: User,
        ip_address: str | None,
        user_agent: str | None,
        remember_me: bool,
    ) -> AuthResult:
        rows, result = self._new_pair(user, ip_address, user_agent, remember_me)
        await self.run_store(self.ledger.save_all, rows)
        return result

    def _new_pair(
        self,
        user: User,
        ip_address: str | None,
        user_agent: str | None,
        remember_me: bool,
    ) -> tuple[list[AuthToken], AuthResult]:
        """Sign an access/refresh pair and build its ledger rows. Nothing is stored."""
        now = utcnow().replace(microsecond=0)
        refresh_ttl = self.remember_me_refresh_token_ttl if remember_me else self.refresh_token_ttl
        access_expires_at = now + self.access_token_ttl
        refresh_expires_at = now + refresh_ttl

        access_token = self.signer.generate_access_token(user, access_expires_at)
        refresh_token = self.signer.generate_refresh_token(user, refresh_expires_at)
        rows = [
            AuthToken(
                id=str(uuid.uuid4()),
                user_id=user.id,
                token_value=token_reference(raw),
                token_type=token_type,
                issued_at=now,
                expires_at=expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            for raw, token_type, expires_at in (
                (access_token, TokenType.ACCESS, access_expires_at),
                (refresh_token, TokenType.REFRESH, refresh_expires_at),
            )
        ]
        return rows, AuthResult(
            user_id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_in=int(self.access_token_ttl.total_seconds()),
            refresh_token_expires_in=int(refresh_ttl.total_seconds()),
            issued_at=now,
        )
