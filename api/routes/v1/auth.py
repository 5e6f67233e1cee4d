"""
api/routes/v1/auth.py -- Authentication and token administration REST endpoints.

Routes:
  POST   /api/v1/auth/register                      -- create account (public)
  POST   /api/v1/auth/login                         -- password login; token pair (public)
  POST   /api/v1/auth/refresh                       -- rotate refresh token; new pair (public)
  POST   /api/v1/auth/logout                        -- revoke presented tokens (optional bearer)
  GET    /api/v1/auth/me                            -- current identity (requires auth)
  GET    /api/v1/auth/users/{id}/tokens             -- ledger rows for a user (VIEW_USERS)
  POST   /api/v1/auth/users/{id}/revoke-tokens      -- revoke all of a user's tokens (MANAGE_USERS)
  POST   /api/v1/auth/users/{id}/roles/{role_id}    -- assign role (MANAGE_ROLES)
  DELETE /api/v1/auth/users/{id}/roles/{role_id}    -- remove role (MANAGE_ROLES)

Handlers are thin: they call AuthService and map results to response models.
Failures are ServiceErrors, rendered by the handler in api/main.py.

Security:
  [C1] Login failures are uniform -- AuthService collapses unknown user, wrong
       password, and inactive account into INVALID_CREDENTIALS.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Request, Response

from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    RevokeTokensResponse,
    TokenRow,
)
from auth.dependencies import (
    client_ip,
    get_auth_service,
    require_authenticated,
    require_permission,
)
from auth.guard import extract_bearer_token
from auth.models import SecurityContext
from auth.permissions import MANAGE_ROLES, MANAGE_USERS, VIEW_USERS
from auth.service import AuthService

# Auth policy:
# - POST   /auth/register, /auth/login, /auth/refresh: public
# - POST   /auth/logout:                               optional bearer
# - GET    /auth/me:                                   requires auth
# - GET    /auth/users/{id}/tokens:                    VIEW_USERS
# - POST   /auth/users/{id}/revoke-tokens:             MANAGE_USERS
# - POST   /auth/users/{id}/roles/{role_id}:           MANAGE_ROLES
# - DELETE /auth/users/{id}/roles/{role_id}:           MANAGE_ROLES
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
async def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> RegisterResponse:
    """Create an account with the default USER role. 409 if the username or email is taken."""
    user = await service.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return RegisterResponse.from_user(user, "User registered successfully")


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with a username or email and a password; returns an access/refresh pair."""
    result = await service.authenticate(
        body.login_identifier,
        body.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        remember_me=body.remember_me,
    )
    _no_store(response)
    return AuthResponse.from_result(result, "Login successful")


@router.post("/auth/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Exchange a refresh token for a new pair. The presented token is consumed."""
    result = await service.refresh_token(
        body.refresh_token,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    _no_store(response)
    return AuthResponse.from_result(result, "Token refreshed successfully")


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    body: Optional[LogoutRequest] = Body(default=None),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the bearer access token and/or the refresh token in the body. Always 200."""
    access_token = extract_bearer_token(request.headers.get("Authorization"))
    refresh_token = body.refresh_token if body is not None else None
    await service.logout(access_token=access_token, refresh_token=refresh_token)
    return MessageResponse(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(ctx: SecurityContext = Depends(require_authenticated)) -> MeResponse:
    """Identity and permissions of the current bearer."""
    return MeResponse.from_context(ctx)


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/auth/users/{user_id}/tokens", response_model=list[TokenRow])
async def list_user_tokens(
    user_id: str,
    ctx: SecurityContext = Depends(require_permission(VIEW_USERS)),
    service: AuthService = Depends(get_auth_service),
) -> list[TokenRow]:
    """Every ledger row for the user, newest first. Token values are never returned."""
    tokens = await service.list_user_tokens(user_id)
    return [TokenRow.from_token(t) for t in tokens]


@router.post("/auth/users/{user_id}/revoke-tokens", response_model=RevokeTokensResponse)
async def revoke_user_tokens(
    user_id: str,
    ctx: SecurityContext = Depends(require_permission(MANAGE_USERS)),
    service: AuthService = Depends(get_auth_service),
) -> RevokeTokensResponse:
    """Revoke every active token of the user; their refresh tokens stop working immediately."""
    revoked = await service.revoke_all_user_tokens(user_id)
    return RevokeTokensResponse(message="Tokens revoked successfully", revoked=revoked)


@router.post("/auth/users/{user_id}/roles/{role_id}", response_model=MessageResponse)
async def assign_role(
    user_id: str,
    role_id: str,
    ctx: SecurityContext = Depends(require_permission(MANAGE_ROLES)),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    changed = await service.assign_role(user_id, role_id)
    return MessageResponse(message="Role assigned successfully" if changed else "Role already assigned")


@router.delete("/auth/users/{user_id}/roles/{role_id}", response_model=MessageResponse)
async def remove_role(
    user_id: str,
    role_id: str,
    ctx: SecurityContext = Depends(require_permission(MANAGE_ROLES)),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    changed = await service.remove_role(user_id, role_id)
    return MessageResponse(message="Role removed successfully" if changed else "Role was not assigned")
