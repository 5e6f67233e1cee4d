"""
auth/passwords.py -- Salted bcrypt password hashing and strength scoring.

Security design decisions:
  bcrypt directly (no passlib wrapper). passlib's wrap-bug detection builds a
  password longer than 72 bytes, which bcrypt 4.x rejects outright.

  Per-user salt: 32 random bytes (256 bits), stored next to the hash. The
  plaintext is pre-combined with it as base64(HMAC-SHA256(salt, plain)) before
  bcrypt sees it. The result is always 44 ASCII bytes, so long or multi-byte
  passwords are never silently truncated at bcrypt's 72-byte limit.

  Fail closed, silently: every verification failure (malformed hash, missing
  salt, unencodable input) is logged at debug level and reported as False.
  A password check can never turn into an error oracle.

  Timing equalization [C1]: dummy_hash is computed once per hasher. The
  authentication service verifies against it when the login identifier is
  unknown so "no such user" costs the same bcrypt work as "wrong password".

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import secrets
from functools import cached_property

import bcrypt

logger = logging.getLogger("tokenguard.passwords")

DEFAULT_ROUNDS = 12
SALT_BYTES = 32

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128

# ASCII-only character classes; a password needs three of the four.
# Backtick and tilde do not count as symbols.
_CHARACTER_CLASSES = (
    re.compile(r"[A-Z]"),
    re.compile(r"[a-z]"),
    re.compile(r"[0-9]"),
    re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]"""),
)
_REQUIRED_CLASSES = 3


class PasswordHasher:
    """Hashes, verifies, and scores passwords.

    Usage:
        hasher = PasswordHasher(rounds=12)
        password_hash, salt = hasher.hash_password("Abcdef12")
        hasher.verify_password("Abcdef12", password_hash, salt)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31.")
        self.rounds = rounds

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> tuple[str, str]:
        """Return (bcrypt_hash, salt) for plain. Both must be stored."""
        salt = secrets.token_urlsafe(SALT_BYTES)
        hashed = bcrypt.hashpw(_combine(plain, salt), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("ascii"), salt

    def verify_password(self, plain: str | None, stored_hash: str | None, salt: str | None) -> bool:
        """Constant-time check of plain against a stored (hash, salt) pair. Never raises."""
        if plain is None or not stored_hash or not salt:
            return False
        try:
            return bcrypt.checkpw(_combine(plain, salt), stored_hash.encode("ascii"))
        except (ValueError, TypeError, AttributeError, UnicodeError) as exc:
            logger.debug("Password verification failed: %s", type(exc).__name__)
            return False

    @cached_property
    def dummy_hash(self) -> tuple[str, str]:
        """(hash, salt) for a throwaway password, computed on first use."""
        return self.hash_password(secrets.token_urlsafe(16))

    def burn_verification(self, plain: str | None) -> None:
        """Spend one bcrypt verification's worth of time and discard the result [C1]."""
        password_hash, salt = self.dummy_hash
        self.verify_password(plain or "", password_hash, salt)

    # ------------------------------------------------------------------
    # Strength
    # ------------------------------------------------------------------

    @staticmethod
    def is_password_strong(password: str | None) -> bool:
        """8..128 characters with at least three of: upper, lower, digit, symbol."""
        if password is None:
            return False
        if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            return False
        present = sum(1 for pattern in _CHARACTER_CLASSES if pattern.search(password))
        return present >= _REQUIRED_CLASSES


def _combine(plain: str, salt: str) -> bytes:
    digest = hmac.new(salt.encode("utf-8"), plain.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest)
