"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tokenguard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      lifespan in api/main.py and the CLI in main.py are the only callers;
      everything below them receives the Settings object by reference through
      auth.context.AuthContext.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Signing secret:
  JWT_SECRET / JWT_SECRET_FILE are read here but NOT validated here. Resolving
  them into a usable key (priority order, 256-bit minimum, development
  fallback, fatal failure in production) is the token signer's contract and
  lives in auth/keys.py, which runs at application startup.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokenguard.config")

# Substrings of ENVIRONMENT that mark a non-production deployment.
_DEVELOPMENT_MARKERS = ("dev", "local", "test")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The default environment is
    "production" so that forgetting to configure a deployment fails closed.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    environment: str = "production"
    log_level: str = "INFO"
    database_url: str = "sqlite:///tokenguard_auth.db"

    # ------------------------------------------------------------------
    # Token signing
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    jwt_secret: str = ""
    jwt_secret_file: str = ""
    jwt_issuer: str = "tokenguard"

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7
    remember_me_refresh_token_expire_days: int = 30

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # 12 rounds targets roughly 100-250ms per hash on commodity hardware.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Stores and maintenance
    # ------------------------------------------------------------------

    store_timeout_seconds: float = 5.0
    token_cleanup_interval_seconds: int = 3600
    used_token_retention_days: int = 7

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["auth.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    @property
    def is_development(self) -> bool:
        """True when ENVIRONMENT names a development, local, or test deployment."""
        env = self.environment.lower()
        return any(marker in env for marker in _DEVELOPMENT_MARKERS)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_ranges(self) -> "Settings":
        """Reject configurations that would silently weaken the auth core.

        bcrypt only accepts 4..31 rounds. Token lifetimes and timeouts must be
        positive, and the remember-me lifetime may not be shorter than the
        normal refresh lifetime.
        """
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.access_token_expire_minutes <= 0:
            raise ValueError("ACCESS_TOKEN_EXPIRE_MINUTES must be positive.")
        if self.refresh_token_expire_days <= 0:
            raise ValueError("REFRESH_TOKEN_EXPIRE_DAYS must be positive.")
        if self.remember_me_refresh_token_expire_days < self.refresh_token_expire_days:
            raise ValueError("REMEMBER_ME_REFRESH_TOKEN_EXPIRE_DAYS must be >= REFRESH_TOKEN_EXPIRE_DAYS.")
        if self.store_timeout_seconds <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be positive.")
        if self.token_cleanup_interval_seconds <= 0:
            raise ValueError("TOKEN_CLEANUP_INTERVAL_SECONDS must be positive.")
        if self.used_token_retention_days < 0:
            raise ValueError("USED_TOKEN_RETENTION_DAYS must not be negative.")
        if not self.jwt_issuer.strip():
            raise ValueError("JWT_ISSUER must not be empty.")
        if self.is_development and not (self.jwt_secret or self.jwt_secret_file):
            logger.warning(
                "No JWT_SECRET configured in %s environment -- a per-process development key will be used.",
                self.environment,
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()


def utcnow() -> datetime:
    """Timezone-aware current UTC time. All timestamps in the core use this."""
    return datetime.now(timezone.utc)
