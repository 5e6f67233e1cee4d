"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

get_security_context() builds the per-request SecurityContext from the
Authorization header (see auth/guard.py) and caches it on request.state, so
several dependencies on one route resolve the token only once.

The guards in auth/guard.py return ErrorKind | None. The require_* helpers
here are the transport boundary: a returned ErrorKind becomes a raised
ServiceError, which the exception handler in api/main.py renders as the
standard error envelope (401 for UNAUTHORIZED_ACCESS, 403 for
INSUFFICIENT_PERMISSIONS).

Usage:
    @router.get("/users/{user_id}/tokens")
    async def tokens(ctx: SecurityContext = Depends(require_permission(VIEW_USERS))): ...

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (Depends/Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Depends, Request

from auth import guard
from auth.context import AuthContext
from auth.models import SecurityContext
from auth.service import AuthService
from core.errors import ErrorKind, ServiceError


def client_ip(request: Request) -> str | None:
    """Client address: first X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else None


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth.service


async def get_security_context(request: Request) -> SecurityContext:
    """Anonymous or authenticated context for this request. Never raises on a bad token."""
    cached = getattr(request.state, "security_context", None)
    if cached is not None:
        return cached
    auth: AuthContext = request.app.state.auth
    ctx = await auth.guard.build_context(
        request.headers.get("Authorization"),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    request.state.security_context = ctx
    return ctx


def _enforce(denied: ErrorKind | None, ctx: SecurityContext) -> SecurityContext:
    if denied is not None:
        raise ServiceError(denied)
    return ctx


async def require_authenticated(ctx: SecurityContext = Depends(get_security_context)) -> SecurityContext:
    """Require authentication. Raises ServiceError(UNAUTHORIZED_ACCESS) -> 401."""
    return _enforce(guard.require_authentication(ctx), ctx)


def require_permission(permission: str) -> Callable[..., Awaitable[SecurityContext]]:
    """Dependency factory: 401 if unauthenticated, 403 without permission."""

    async def dependency(ctx: SecurityContext = Depends(get_security_context)) -> SecurityContext:
        return _enforce(guard.require_permission(ctx, permission), ctx)

    return dependency


def require_any_permission(*permissions: str) -> Callable[..., Awaitable[SecurityContext]]:
    async def dependency(ctx: SecurityContext = Depends(get_security_context)) -> SecurityContext:
        return _enforce(guard.require_any_permission(ctx, *permissions), ctx)

    return dependency


def require_all_permissions(*permissions: str) -> Callable[..., Awaitable[SecurityContext]]:
    async def dependency(ctx: SecurityContext = Depends(get_security_context)) -> SecurityContext:
        return _enforce(guard.require_all_permissions(ctx, *permissions), ctx)

    return dependency
