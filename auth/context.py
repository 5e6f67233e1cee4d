"""
auth/context.py -- Composition root for the auth core.

build_auth_context() wires every auth component from one Settings object,
exactly once, and returns them bundled in an AuthContext. The FastAPI lifespan
stores it on app.state.auth; the CLI builds its own. Nothing in auth/ or core/
reaches for a module-level singleton -- components receive what they need
through their constructors.

Startup failures are loud: KeyProvisioningError from resolve_signing_secret()
propagates out of build_auth_context() and aborts the lifespan, so a
production deployment without a signing secret never starts serving.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.engine import Engine

from auth.guard import AuthorizationGuard
from auth.keys import resolve_signing_secret
from auth.ledger import TokenLedger
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.signer import TokenSigner
from auth.store import RoleStore, UserStore, create_store_engine
from core.config import Settings
from core.events import EventBus

logger = logging.getLogger("tokenguard.context")


@dataclass
class AuthContext:
    settings: Settings
    engine: Engine
    users: UserStore
    roles: RoleStore
    ledger: TokenLedger
    signer: TokenSigner
    hasher: PasswordHasher
    events: EventBus
    service: AuthService
    guard: AuthorizationGuard

    def close(self) -> None:
        """Release the shared engine. The stores borrow it and do not dispose it themselves."""
        self.engine.dispose()


def build_auth_context(settings: Settings, events: EventBus | None = None) -> AuthContext:
    """Build every auth component from settings.

    Raises KeyProvisioningError when no acceptable signing secret is available
    outside development.
    """
    secret = resolve_signing_secret(settings)
    engine = create_store_engine(settings.database_url, settings.store_timeout_seconds)

    users = UserStore(engine=engine)
    roles = RoleStore(engine=engine)
    ledger = TokenLedger(engine=engine)
    signer = TokenSigner(secret, issuer=settings.jwt_issuer)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    events = events if events is not None else EventBus()

    service = AuthService(
        users,
        roles,
        ledger,
        signer,
        hasher,
        events,
        access_token_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        refresh_token_ttl=timedelta(days=settings.refresh_token_expire_days),
        remember_me_refresh_token_ttl=timedelta(days=settings.remember_me_refresh_token_expire_days),
        store_timeout=settings.store_timeout_seconds,
    )
    guard = AuthorizationGuard(service)

    logger.info(
        "Auth context ready (environment=%s, issuer=%s, bcrypt_rounds=%d)",
        settings.environment,
        settings.jwt_issuer,
        settings.bcrypt_rounds,
    )
    return AuthContext(
        settings=settings,
        engine=engine,
        users=users,
        roles=roles,
        ledger=ledger,
        signer=signer,
        hasher=hasher,
        events=events,
        service=service,
        guard=guard,
    )
