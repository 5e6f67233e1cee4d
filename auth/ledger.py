"""
auth/ledger.py -- Durable record of every issued token.

Pattern: Repository + Data Mapper, same as auth/store.py. TokenLedger is the
repository; _row_to_token is the mapper.

What is stored:
  token_value is token_reference(raw) -- the SHA-256 hex digest of the signed
  token. The bearer string itself is never persisted, so a copy of the
  database cannot be replayed against the API. SHA-256 (not bcrypt) is enough
  because the input is a long random-nonce JWT, not a low-entropy password,
  and the lookup must be O(1) through the UNIQUE index.

State machine (per row):
  active --rotate--------------> used      (refresh-token rotation)
  active --mark_token_as_used--> used
  active --revoke_token--------> revoked   (logout, admin revocation)
  Both targets are terminal. At most one of used_at / revoked_at is ever set.

Atomicity:
  rotate, mark_token_as_used and revoke_token start with a conditional UPDATE
  guarded by "used_at IS NULL AND revoked_at IS NULL", and they report
  rowcount > 0. Two concurrent refreshes presenting the same token race on
  that UPDATE; the database serialises them, exactly one sees rowcount 1, and
  the other sees 0 and fails. This UPDATE is the linearization point for
  refresh-token replay -- never turn it into a read-then-write.

  rotate inserts the successor pair in the same transaction as that UPDATE:
  the old refresh token is consumed only if its replacement is stored.

  On SQLite the UPDATE is also the first statement of its transaction, so the
  writer waits on the busy timeout for the lock instead of failing on a stale
  WAL read snapshot.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import Column, Index, MetaData, String, Table, Text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuthToken, TokenType
from auth.store import DEFAULT_DB_URL, create_store_engine, from_iso, to_iso
from core.config import utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_tokens = Table(
    "auth_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("token_value", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("token_type", String(10), nullable=False),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("revoked_at", String(32)),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Index("ix_auth_tokens_user_type", "user_id", "token_type"),
    Index("ix_auth_tokens_expires_at", "expires_at"),
)


def token_reference(raw_token: str) -> str:
    """Ledger key for a signed token: its SHA-256 hex digest."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _active():
    return _tokens.c.used_at.is_(None) & _tokens.c.revoked_at.is_(None)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TokenLedger:
    """Repository for AuthToken rows.

    Usage:
        ledger = TokenLedger(engine=engine)
        ledger.save_all([access_row, refresh_row])
        row = ledger.find_by_token(token_reference(raw))
        if ledger.mark_token_as_used(row.id): ...
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
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def save(self, token: AuthToken) -> AuthToken:
        return self.save_all([token])[0]

    def save_all(self, tokens: Iterable[AuthToken]) -> list[AuthToken]:
        """Insert every row in one transaction: all of them land, or none do."""
        tokens = list(tokens)
        if not tokens:
            return tokens
        for token in tokens:
            token.id = token.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            conn.execute(_tokens.insert(), [_token_values(t) for t in tokens])
            conn.commit()
        return tokens

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_id(self, token_id: str) -> AuthToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.id == token_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def find_by_token(self, token_value: str) -> AuthToken | None:
        """Look up a row by its reference (see token_reference). O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_tokens.select().where(_tokens.c.token_value == token_value)).fetchone()
        return _row_to_token(row) if row is not None else None

    def find_valid_tokens_by_user_and_type(self, user_id: str, token_type: TokenType) -> list[AuthToken]:
        """Rows that are neither used nor revoked and have not expired, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tokens.select()
                .where(
                    (_tokens.c.user_id == user_id)
                    & (_tokens.c.token_type == token_type.value)
                    & _active()
                    & (_tokens.c.expires_at > to_iso(utcnow()))
                )
                .order_by(_tokens.c.issued_at.desc())
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def find_all_tokens_for_user(self, user_id: str) -> list[AuthToken]:
        """Every row for user_id in any state, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tokens.select().where(_tokens.c.user_id == user_id).order_by(_tokens.c.issued_at.desc())
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def mark_token_as_used(self, token_id: str) -> bool:
        """active -> used. True only if this call performed the transition."""
        return self._transition(token_id, used_at=to_iso(utcnow()))

    def revoke_token(self, token_id: str) -> bool:
        """active -> revoked. True only if this call performed the transition."""
        return self._transition(token_id, revoked_at=to_iso(utcnow()))

    def _transition(self, token_id: str, **values) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.update().where((_tokens.c.id == token_id) & _active()).values(**values))
            conn.commit()
        return result.rowcount == 1

    def rotate(self, token_id: str, new_tokens: Iterable[AuthToken]) -> bool:
        """active -> used for token_id and insert new_tokens, in one transaction.

        Returns False, with nothing written, if token_id was not active. If the
        insert fails the transition is rolled back too, so the presented token
        stays usable.
        """
        new_tokens = list(new_tokens)
        for token in new_tokens:
            token.id = token.id or str(uuid.uuid4())
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.update().where((_tokens.c.id == token_id) & _active()).values(used_at=to_iso(utcnow()))
            )
            if result.rowcount != 1:
                conn.rollback()
                return False
            try:
                conn.execute(_tokens.insert(), [_token_values(t) for t in new_tokens])
                conn.commit()
            except SQLAlchemyError:
                conn.rollback()
                raise
        return True

    def revoke_all_user_tokens(self, user_id: str) -> int:
        """Revoke every active row for user_id. Returns the number revoked."""
        return self._bulk_revoke(_tokens.c.user_id == user_id)

    def revoke_user_tokens_by_type(self, user_id: str, token_type: TokenType) -> int:
        return self._bulk_revoke((_tokens.c.user_id == user_id) & (_tokens.c.token_type == token_type.value))

    def _bulk_revoke(self, clause) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.update().where(clause & _active()).values(revoked_at=to_iso(utcnow())))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_expired_tokens(self) -> int:
        """Delete rows whose expires_at is in the past. Unexpired rows are untouched, used or not."""
        with self.engine.connect() as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.expires_at < to_iso(utcnow())))
            conn.commit()
        return result.rowcount

    def delete_used_tokens_older_than(self, cutoff: datetime) -> int:
        """Delete used rows whose used_at is before cutoff."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.delete().where(_tokens.c.used_at.is_not(None) & (_tokens.c.used_at < to_iso(cutoff)))
            )
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _token_values(token: AuthToken) -> dict:
    return {
        "id": token.id,
        "user_id": token.user_id,
        "token_value": token.token_value,
        "token_type": token.token_type.value,
        "issued_at": to_iso(token.issued_at),
        "expires_at": to_iso(token.expires_at),
        "used_at": to_iso(token.used_at),
        "revoked_at": to_iso(token.revoked_at),
        "ip_address": token.ip_address,
        "user_agent": token.user_agent,
    }


def _row_to_token(row) -> AuthToken:
    return AuthToken(
        id=row.id,
        user_id=row.user_id,
        token_value=row.token_value,
        token_type=TokenType(row.token_type),
        issued_at=from_iso(row.issued_at),
        expires_at=from_iso(row.expires_at),
        used_at=from_iso(row.used_at),
        revoked_at=from_iso(row.revoked_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )
