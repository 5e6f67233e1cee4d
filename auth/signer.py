"""
auth/signer.py -- Signed bearer tokens (access and refresh).

Security design decisions:
  JWT: python-jose with HS256. The secret comes from auth/keys.py and is
       resolved once at startup; TokenSigner never reads configuration itself.

  Claims: iss, sub (user id), username, email, first_name, last_name,
       token_type ("access" | "refresh"), jti, iat, exp. The jti is a random
       nonce, so two tokens issued for the same user in the same second are
       never byte-identical (and never collide in the ledger).

  Verification: signature, issuer, and expiry are checked together by
       jwt.decode() using its own clock. Any failure -- bad signature, wrong
       issuer, expired, malformed, missing claim -- returns None. The route
       layer turns None into a 401. Revocation is NOT consulted here; that is
       a ledger lookup done by the guard and the service.

  Unverified decoding (extract_user_id_from_token, get_token_expiration) is
       for diagnostics only and must never feed an authorization decision.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenClaims, TokenType, User
from core.config import utcnow

logger = logging.getLogger("tokenguard.signer")

_ALGORITHM = "HS256"

_DECODE_OPTIONS = {
    "require_exp": True,
    "require_iat": True,
    "require_sub": True,
    "require_iss": True,
    "require_jti": True,
}

_REQUIRED_CUSTOM_CLAIMS = ("username", "token_type")


class TokenSigner:
    """Creates and verifies HS256 JWTs for one issuer and one secret.

    Usage:
        signer = TokenSigner(secret, issuer="tokenguard")
        token = signer.generate_access_token(user, utcnow() + timedelta(minutes=15))
        claims = signer.validate_token(token)  # TokenClaims or None
    """

    def __init__(self, secret: str, issuer: str = "tokenguard") -> None:
        if not secret:
            raise ValueError("TokenSigner requires a non-empty secret.")
        self._secret = secret
        self.issuer = issuer

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def generate_access_token(self, user: User, expires_at: datetime) -> str:
        return self._encode(user, TokenType.ACCESS, expires_at)

    def generate_refresh_token(self, user: User, expires_at: datetime) -> str:
        return self._encode(user, TokenType.REFRESH, expires_at)

    def _encode(self, user: User, token_type: TokenType, expires_at: datetime) -> str:
        payload = {
            "iss": self.issuer,
            "sub": user.id,
            "username": user.username,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "token_type": token_type.claim,
            "jti": secrets.token_urlsafe(16),
            "iat": utcnow(),
            "exp": expires_at,
        }
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def validate_token(self, token: str | None) -> TokenClaims | None:
        """Verify signature, issuer, and expiry. Returns TokenClaims or None on any failure."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options=_DECODE_OPTIONS,
            )
        except ExpiredSignatureError:
            logger.debug("Token rejected: expired")
            return None
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            return None

        if any(not payload.get(name) for name in _REQUIRED_CUSTOM_CLAIMS):
            logger.debug("Token rejected: missing custom claims")
            return None
        return _claims_from_payload(payload)

    # ------------------------------------------------------------------
    # Unverified helpers (diagnostics only)
    # ------------------------------------------------------------------

    @staticmethod
    def extract_user_id_from_token(token: str | None) -> str | None:
        """Subject claim without verifying the signature. Never use for authorization."""
        payload = _unverified(token)
        if payload is None:
            return None
        subject = payload.get("sub")
        return subject if isinstance(subject, str) else None

    @staticmethod
    def get_token_expiration(token: str | None) -> datetime | None:
        """exp claim as an aware UTC datetime, without verifying the signature."""
        payload = _unverified(token)
        if payload is None:
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            return None
        return datetime.fromtimestamp(exp, timezone.utc)


def _unverified(token: str | None) -> dict | None:
    if not token:
        return None
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def _claims_from_payload(payload: dict) -> TokenClaims:
    return TokenClaims(
        user_id=payload["sub"],
        username=payload["username"],
        email=payload.get("email") or "",
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        token_type=payload["token_type"],
        token_id=payload["jti"],
        issuer=payload["iss"],
        issued_at=datetime.fromtimestamp(payload["iat"], timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], timezone.utc),
    )
