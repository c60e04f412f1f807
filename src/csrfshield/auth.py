"""Seams to the authentication system that owns the user's session.

The CSRF layer never manages sessions itself. It only needs a bearer
credential when fetching a token, and a stream of sign-in/sign-out events
to keep the cached token scoped to the current session.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Protocol

from csrfshield.models.events import AuthEvent

logger = logging.getLogger(__name__)

AuthEventListener = Callable[[AuthEvent], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


class CredentialProvider(Protocol):
    """Supplies the bearer credential of the signed-in user."""

    async def get_access_token(self) -> str | None:
        """Return the current access token, or None when signed out."""
        ...


class AuthEventSource(Protocol):
    """Emits authentication transitions to subscribed listeners."""

    def subscribe(self, listener: AuthEventListener) -> Unsubscribe:
        """Register a listener and return a callable that removes it."""
        ...


class StaticCredentialProvider:
    """Credential provider backed by a value the application sets.

    Useful for scripts and tests, and for apps that already track the
    access token somewhere and just push updates here.
    """

    def __init__(self, access_token: str | None = None):
        self.access_token = access_token

    async def get_access_token(self) -> str | None:
        return self.access_token


class AuthEventBus:
    """In-process AuthEventSource.

    Listeners may be plain functions or coroutine functions. A failing
    listener is logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._listeners: list[AuthEventListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: AuthEventListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: AuthEvent) -> None:
        """Deliver an event to every listener in subscription order."""
        logger.debug(f"Emitting auth event {event.value}")
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if result is not None:
                    await result
            except Exception as e:
                logger.warning(f"Auth event listener failed on {event.value}: {e}")
