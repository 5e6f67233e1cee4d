"""
auth/guard.py -- Per-request security context and permission guards.

AuthorizationGuard turns an Authorization header into a SecurityContext:

  header missing / not "Bearer <token>"   -> anonymous
  signature, issuer, or expiry invalid    -> anonymous
  token_type claim is not "access"        -> anonymous
  ledger row missing, revoked, or used    -> anonymous
  user missing or inactive                -> anonymous
  otherwise                               -> authenticated, with the union of
                                             the user's role permissions

Token problems never raise: an unusable token is simply no identity. Store
failures do propagate (as ServiceError from the service's store wrapper),
because "the database is down" must not be mistaken for "anonymous".

Guards return ErrorKind | None instead of raising. They have no side effects,
so callers can compose them freely and decide at the transport boundary how
to report a denial (auth/dependencies.py raises ServiceError there).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re

from auth.ledger import token_reference
from auth.models import SecurityContext, TokenType
from auth.service import AuthService
from core.errors import ErrorKind

logger = logging.getLogger("tokenguard.guard")

# Case-sensitive scheme, any surrounding whitespace, exactly one token.
_BEARER_RE = re.compile(r"^\s*Bearer\s+(\S+)\s*$")


def extract_bearer_token(header: str | None) -> str | None:
    """Token from "Bearer <token>", or None when the header is absent or malformed."""
    if not header:
        return None
    match = _BEARER_RE.match(header)
    return match.group(1) if match else None


class AuthorizationGuard:
    """Builds SecurityContexts; reuses the service's stores and store-call wrapper."""

    def __init__(self, service: AuthService) -> None:
        self._service = service

    async def build_context(
        self,
        authorization: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SecurityContext:
        anonymous = SecurityContext.anonymous(ip_address, user_agent)
        token = extract_bearer_token(authorization)
        if token is None:
            return anonymous

        service = self._service
        claims = service.signer.validate_token(token)
        if claims is None or not claims.is_access:
            return anonymous

        row = await service.run_store(service.ledger.find_by_token, token_reference(token))
        if (
            row is None
            or row.token_type is not TokenType.ACCESS
            or row.user_id != claims.user_id
            or row.is_used
            or row.is_revoked
        ):
            logger.debug("Access token for %s has no live ledger row", claims.user_id)
            return anonymous

        user = await service.run_store(service.users.find_by_id, claims.user_id)
        if user is None or not user.is_active:
            logger.debug("Access token subject %s is missing or inactive", claims.user_id)
            return anonymous

        permissions = await service.run_store(service.roles.get_user_permissions, user.id)
        return SecurityContext.authenticated(user, permissions, ip_address, user_agent)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def require_authentication(ctx: SecurityContext) -> ErrorKind | None:
    return None if ctx.is_authenticated else ErrorKind.UNAUTHORIZED_ACCESS


def require_permission(ctx: SecurityContext, permission: str) -> ErrorKind | None:
    denied = require_authentication(ctx)
    if denied is not None:
        return denied
    return None if ctx.has_permission(permission) else ErrorKind.INSUFFICIENT_PERMISSIONS


def require_any_permission(ctx: SecurityContext, *permissions: str) -> ErrorKind | None:
    denied = require_authentication(ctx)
    if denied is not None:
        return denied
    return None if ctx.has_any_permission(*permissions) else ErrorKind.INSUFFICIENT_PERMISSIONS


def require_all_permissions(ctx: SecurityContext, *permissions: str) -> ErrorKind | None:
    denied = require_authentication(ctx)
    if denied is not None:
        return denied
    return None if ctx.has_all_permissions(*permissions) else ErrorKind.INSUFFICIENT_PERMISSIONS


def require_resource_access(ctx: SecurityContext, owner_id: str | None, *admin_permissions: str) -> ErrorKind | None:
    """Owner of the resource, or holder of any of admin_permissions."""
    denied = require_authentication(ctx)
    if denied is not None:
        return denied
    return None if ctx.can_access(owner_id, *admin_permissions) else ErrorKind.INSUFFICIENT_PERMISSIONS
