"""Keep the token store aligned with the session and with wall-clock time.

Sign-out clears the token, sign-in and credential refreshes replace it,
and a background timer refreshes it well inside its lifetime. Every
refresh started here is best-effort: failures are logged and never reach
application code.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from csrfshield.auth import AuthEventSource, Unsubscribe
from csrfshield.models.events import AuthEvent
from csrfshield.services.store import CSRFTokenStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = timedelta(hours=20)

_REFRESH_EVENTS = frozenset({AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED})


class TokenLifecycleCoordinator:
    """Drives clear/refresh of the token store from auth events and a timer."""

    def __init__(
        self,
        store: CSRFTokenStore,
        events: AuthEventSource,
        refresh_interval: timedelta | float = DEFAULT_REFRESH_INTERVAL,
    ):
        """Initialize the coordinator.

        Args:
            store: Token store to keep current
            events: Source of sign-in/sign-out events
            refresh_interval: Period of the background refresh, as a
                timedelta or in seconds. Must be shorter than the token TTL.
        """
        if isinstance(refresh_interval, timedelta):
            refresh_interval = refresh_interval.total_seconds()
        if refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")

        self.store = store
        self.events = events
        self.refresh_interval = refresh_interval
        self._unsubscribe: Unsubscribe | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._refresh_tasks: set[asyncio.Task[None]] = set()

    # ================================
    # Lifecycle
    # ================================

    @property
    def running(self) -> bool:
        """True while subscribed to auth events and the timer is alive."""
        return self._timer_task is not None and not self._timer_task.done()

    async def start(self, prefetch: bool = False) -> None:
        """Subscribe to auth events and start the periodic refresh.

        Safe to call multiple times - subsequent calls are ignored if
        already running.

        Args:
            prefetch: Also acquire a token right away in the background
        """
        if self.running:
            return

        self._unsubscribe = self.events.subscribe(self.handle_auth_event)
        self._timer_task = asyncio.create_task(
            self._refresh_loop(), name="csrf_token_refresh_timer"
        )
        logger.debug(f"Token lifecycle started (interval={self.refresh_interval}s)")

        if prefetch:
            self._spawn_refresh("startup")

    async def stop(self) -> None:
        """Unsubscribe, stop the timer and cancel pending refreshes.

        Safe to call multiple times.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = list(self._refresh_tasks)
        if self._timer_task is not None:
            tasks.append(self._timer_task)
            self._timer_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_tasks.clear()

    async def wait_for_pending(self) -> None:
        """Wait until every event-triggered refresh has settled."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    # ================================
    # Event handling
    # ================================

    def handle_auth_event(self, event: AuthEvent) -> None:
        """React to an authentication transition.

        Sign-out clears synchronously so no later call can pick up the old
        session's token. Refreshes run in the background.
        """
        if event == AuthEvent.SIGNED_OUT:
            logger.info("Signed out, clearing CSRF token")
            self.store.clear_token()
        elif event in _REFRESH_EVENTS:
            self._spawn_refresh(event.value)
        else:
            logger.debug(f"Ignoring auth event {event.value}")

    def _spawn_refresh(self, reason: str) -> None:
        task = asyncio.create_task(
            self._refresh_best_effort(reason), name=f"csrf_token_refresh_{reason}"
        )
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh_best_effort(self, reason: str) -> None:
        try:
            await self.store.refresh_token()
            logger.debug(f"CSRF token refreshed ({reason})")
        except Exception as e:
            logger.warning(f"Failed to refresh CSRF token ({reason}): {e}")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self._refresh_best_effort("periodic")
