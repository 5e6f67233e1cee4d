"""
core/events.py -- Domain events and the in-process event bus.

The auth core only needs a one-way sink: it calls publish(event) after a state
change has been committed and never waits for, or depends on, what subscribers
do. EventBus is the default sink.

Thread safety: publish() may be called from worker threads while subscribe()
runs on the event loop. The registry is a dict guarded by a Lock; publish()
takes a snapshot under the lock and delivers outside it, so a slow or
re-entrant handler can neither block subscribers nor see a half-mutated
registry.

A handler that raises is logged and skipped. Events are informational; a
broken audit subscriber must not turn a successful login into a failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from core.config import utcnow

logger = logging.getLogger("tokenguard.events")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainEvent:
    occurred_at: datetime = field(default_factory=utcnow, kw_only=True)

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class UserRegistered(DomainEvent):
    user_id: str
    username: str
    email: str


@dataclass(frozen=True)
class UserAuthenticated(DomainEvent):
    user_id: str
    username: str
    ip_address: str | None
    user_agent: str | None


@dataclass(frozen=True)
class TokenRefreshed(DomainEvent):
    user_id: str
    username: str
    ip_address: str | None


@dataclass(frozen=True)
class UserLoggedOut(DomainEvent):
    user_id: str | None
    revoked: int


@dataclass(frozen=True)
class TokensRevoked(DomainEvent):
    user_id: str
    revoked: int


# ---------------------------------------------------------------------------
# Sink port + default implementation
# ---------------------------------------------------------------------------


class EventSink(Protocol):
    def publish(self, event: DomainEvent) -> None: ...


Handler = Callable[[DomainEvent], None]


class EventBus:
    """Thread-safe publish/subscribe registry keyed by event class.

    Usage:
        bus = EventBus()
        token = bus.subscribe(UserAuthenticated, audit_log.append)
        bus.publish(UserAuthenticated(...))
        bus.unsubscribe(token)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[int, tuple[type[DomainEvent], Handler]] = {}
        self._next_id = 0

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> int:
        """Register handler for event_type (and its subclasses). Returns a token for unsubscribe()."""
        with self._lock:
            self._next_id += 1
            self._handlers[self._next_id] = (event_type, handler)
            return self._next_id

    def unsubscribe(self, subscription_id: int) -> bool:
        with self._lock:
            return self._handlers.pop(subscription_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            snapshot = list(self._handlers.values())
        for event_type, handler in snapshot:
            if not isinstance(event, event_type):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.event_type)
