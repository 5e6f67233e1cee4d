"""
auth/keys.py -- Signing-secret provisioning for the token signer.

Resolution order (first candidate that passes wins):
  1. JWT_SECRET       -- the secret value itself.
  2. JWT_SECRET_FILE  -- path to a file whose (stripped) contents are the secret.
  3. Development only -- a per-process fallback derived from the local machine.

Any candidate shorter than 32 bytes (256 bits) once stripped and UTF-8
encoded is rejected with a warning and the next source is tried.

Outside development, running out of candidates raises KeyProvisioningError.
build_auth_context() calls resolve_signing_secret() during the FastAPI
lifespan startup, so the error aborts startup: the service refuses to run
with a weak or absent secret rather than limping along [M6].

Development fallback:
  base64(SHA-256(user + host + interpreter + version tag) || 16 random bytes)
  The random half is drawn once per process (lru_cache), so the key is stable
  for the life of the process and changes on restart. Tokens issued before a
  restart stop verifying afterwards; users simply log in again.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import getpass
import hashlib
import logging
import secrets
import socket
import sys
from functools import lru_cache
from pathlib import Path

from core.config import Settings

logger = logging.getLogger("tokenguard.keys")

MIN_SECRET_BYTES = 32
_DEV_SECRET_TAG = "tokenguard-dev-secret-v1"


class KeyProvisioningError(RuntimeError):
    """No acceptable signing secret could be resolved outside development."""


def _is_acceptable(candidate: str | None, source: str) -> bool:
    if candidate is None or not candidate.strip():
        return False
    length = len(candidate.strip().encode("utf-8"))
    if length < MIN_SECRET_BYTES:
        logger.warning(
            "Signing secret from %s rejected: %d bytes, minimum is %d (256 bits)",
            source,
            length,
            MIN_SECRET_BYTES,
        )
        return False
    return True


def _read_secret_file(path: str) -> str | None:
    try:
        return Path(path.strip()).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        logger.error("Failed to read signing secret from file %s", path, exc_info=True)
        return None


def _machine_fingerprint() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "tokenguard"
    return f"{user}{socket.gethostname()}{sys.executable}{_DEV_SECRET_TAG}"


@lru_cache(maxsize=1)
def development_secret() -> str:
    """Per-process development secret. Same value for every call within one process."""
    digest = hashlib.sha256(_machine_fingerprint().encode("utf-8")).digest()
    return base64.b64encode(digest + secrets.token_bytes(16)).decode("ascii")


def resolve_signing_secret(settings: Settings) -> str:
    """Return the signing secret for settings, or raise KeyProvisioningError.

    The returned value is stripped of surrounding whitespace.
    """
    if _is_acceptable(settings.jwt_secret, "JWT_SECRET"):
        logger.debug("Signing secret loaded from JWT_SECRET")
        return settings.jwt_secret.strip()

    if settings.jwt_secret_file.strip():
        from_file = _read_secret_file(settings.jwt_secret_file)
        if _is_acceptable(from_file, "JWT_SECRET_FILE"):
            logger.debug("Signing secret loaded from file %s", settings.jwt_secret_file)
            return from_file.strip()

    if settings.is_development:
        logger.warning(
            "Using a per-process development signing secret (ENVIRONMENT=%s). "
            "Tokens will not survive a restart. Never use this in production.",
            settings.environment,
        )
        return development_secret()

    raise KeyProvisioningError(
        "No signing secret configured. Set JWT_SECRET or JWT_SECRET_FILE to a value of at least "
        f"{MIN_SECRET_BYTES} bytes (ENVIRONMENT={settings.environment!r})."
    )


def generate_secret() -> str:
    """A fresh random secret suitable for JWT_SECRET (64 url-safe characters, 384 bits)."""
    return secrets.token_urlsafe(48)
