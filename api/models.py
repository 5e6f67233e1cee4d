"""
API request and response models for the Tokenguard REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field names on the wire are camelCase (firstName, accessTokenExpiresIn, ...);
Python code uses snake_case. alias_generator=to_camel does the translation and
populate_by_name lets tests and handlers construct models with either form.
FastAPI serialises response_model instances by alias.

Request models only bound sizes. Content rules (username charset, password
strength, email format) belong to AuthService, which reports every violation
at once instead of stopping at the first one.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AuthResult, AuthToken, PublicUser, SecurityContext


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(max_length=255)
    email: str = Field(max_length=320)
    password: str = Field(max_length=1024)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login. loginIdentifier is a username or an email."""

    login_identifier: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)
    remember_me: bool = False


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class LogoutRequest(_CamelModel):
    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(_CamelResponse):
    message: str


class RegisterResponse(_CamelResponse):
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    message: str

    @classmethod
    def from_user(cls, user: PublicUser, message: str) -> "RegisterResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            message=message,
        )


class AuthResponse(_CamelResponse):
    """Login and refresh response. Expiry durations are in seconds."""

    user_id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    access_token: str
    refresh_token: str
    access_token_expires_in: int
    refresh_token_expires_in: int
    message: str

    @classmethod
    def from_result(cls, result: AuthResult, message: str) -> "AuthResponse":
        return cls(
            user_id=result.user_id,
            username=result.username,
            email=result.email,
            first_name=result.first_name,
            last_name=result.last_name,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            access_token_expires_in=result.access_token_expires_in,
            refresh_token_expires_in=result.refresh_token_expires_in,
            message=message,
        )


class MeResponse(_CamelResponse):
    user_id: str
    username: str
    email: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)

    @classmethod
    def from_context(cls, ctx: SecurityContext) -> "MeResponse":
        return cls(
            user_id=ctx.user_id,
            username=ctx.username,
            email=ctx.email,
            permissions=sorted(ctx.permissions),
        )


class TokenRow(_CamelResponse):
    """One ledger row as shown to administrators. The token reference is never exposed."""

    id: str
    user_id: str
    token_type: str
    issued_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    active: bool

    @classmethod
    def from_token(cls, token: AuthToken) -> "TokenRow":
        return cls(
            id=token.id,
            user_id=token.user_id,
            token_type=token.token_type.value,
            issued_at=token.issued_at,
            expires_at=token.expires_at,
            used_at=token.used_at,
            revoked_at=token.revoked_at,
            ip_address=token.ip_address,
            user_agent=token.user_agent,
            active=token.is_valid(),
        )


class RevokeTokensResponse(_CamelResponse):
    message: str
    revoked: int


class ErrorResponse(_CamelResponse):
    """Uniform error envelope returned by every exception handler in api/main.py."""

    status: int
    code: int
    message: str
    field_errors: Optional[dict[str, str]] = None
    path: str
    timestamp: datetime


class HealthResponse(_CamelResponse):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
