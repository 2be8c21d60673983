"""
Session Change Notification.

A small publish/subscribe hub that lets view-models and the app-lock
gate react to session changes without polling.  Listeners are plain
callables invoked on the event loop that owns the session, in
subscription order.

Usage::

    unsubscribe = session.subscribe(lambda event: print(event.kind))
    ...
    unsubscribe()
"""

from __future__ import annotations

from enum import StrEnum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from grana.logger import StructuredLogger
from grana.models.auth_models import AuthenticatedUser
from grana.models.enums import SessionState
from grana.models.user import UserProfile


class SessionEventKind(StrEnum):
    AUTH_STATE_CHANGED = "AUTH_STATE_CHANGED"
    USER_CHANGED = "USER_CHANGED"
    PROFILE_CHANGED = "PROFILE_CHANGED"
    PERSISTENCE_WARNING = "PERSISTENCE_WARNING"


class SessionSnapshot(BaseModel):
    """Read-only view of the session at one point in time."""

    model_config = ConfigDict(frozen=True)

    state: SessionState
    is_authenticated: bool
    current_user: Optional[AuthenticatedUser] = None
    profile: Optional[UserProfile] = None


class SessionEvent(BaseModel):
    """One notification delivered to listeners.

    Attributes
    ----------
    kind:
        What changed.
    snapshot:
        Session state right after the change.
    error:
        Debug description of the storage failure, for
        ``PERSISTENCE_WARNING`` only.
    """

    model_config = ConfigDict(frozen=True)

    kind: SessionEventKind
    snapshot: SessionSnapshot
    error: Optional[str] = None


SessionListener = Callable[[SessionEvent], None]


class SessionEventEmitter:
    """Ordered listener registry.

    A listener that raises is logged and skipped; the remaining
    listeners still receive the event.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener* and return a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self._logger.error(
                    "Session listener %r failed on %s.",
                    listener,
                    event.kind,
                    exc_info=True,
                )

    def __len__(self) -> int:
        return len(self._listeners)
