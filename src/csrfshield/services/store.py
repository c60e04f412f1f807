"""Process-wide CSRF token cache with in-flight deduplication.

The store is the single source of truth for "the current usable token".
Concurrent callers that find no valid token all await the same pending
acquisition task, so at most one request to the token endpoint is in
flight at any time. No lock is involved: the task itself is the
synchronization point.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol

from csrfshield.models.errors import CSRFConfigurationError
from csrfshield.models.tokens import CSRFToken, utc_now

logger = logging.getLogger(__name__)


class TokenSource(Protocol):
    """Anything that can perform one token acquisition round trip."""

    async def fetch_token(self) -> CSRFToken: ...


class TokenStoreState(str, Enum):
    EMPTY = "empty"
    FETCHING = "fetching"
    CACHED = "cached"


class CSRFTokenStore:
    """Caches the current CSRF token and serializes its acquisition.

    States: EMPTY -> FETCHING -> CACHED, and back to EMPTY when the token
    expires, is cleared, or a refresh is forced. A failed acquisition goes
    straight back to EMPTY and is never cached.

    ``clear_token`` and ``refresh_token`` bump a generation counter. An
    acquisition started under an older generation still settles for the
    callers already awaiting it, but its result is not cached.
    """

    def __init__(
        self,
        fetcher: TokenSource,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the token store.

        Args:
            fetcher: Performs the actual endpoint round trip
            clock: Returns the current aware UTC time; injectable for tests
        """
        self._fetcher = fetcher
        self._clock = clock
        self._token: CSRFToken | None = None
        self._pending: asyncio.Task[CSRFToken] | None = None
        self._generation = 0

    # ================================
    # State
    # ================================

    @property
    def state(self) -> TokenStoreState:
        if self._pending is not None:
            return TokenStoreState.FETCHING
        if self._token is not None and not self._token.is_expired(self._clock()):
            return TokenStoreState.CACHED
        return TokenStoreState.EMPTY

    @property
    def current_token(self) -> CSRFToken | None:
        """The cached token if it is still valid, without fetching."""
        if self._token is not None and not self._token.is_expired(self._clock()):
            return self._token
        return None

    # ================================
    # Operations
    # ================================

    async def get_token(self) -> str:
        """Return a valid token value, fetching one if needed.

        A valid cached token is returned without suspending. Otherwise the
        caller joins the pending acquisition, starting one if none exists.

        Raises:
            CSRFError: Whatever the acquisition failed with. Every caller
                awaiting the same acquisition sees the same exception.
        """
        token = self.current_token
        if token is not None:
            return token.value

        if self._token is not None:
            logger.debug("Cached CSRF token expired, dropping it")
            self._token = None

        if self._pending is None:
            self._pending = self._start_acquisition()
        else:
            logger.debug("Joining in-flight CSRF token acquisition")

        # Shield so one waiter being cancelled does not cancel the others
        token = await asyncio.shield(self._pending)
        return token.value

    async def refresh_token(self) -> str:
        """Discard the cached token and any pending acquisition, then fetch."""
        self.clear_token()
        return await self.get_token()

    def clear_token(self) -> None:
        """Forget the current token without fetching a new one.

        A pending acquisition keeps running for the callers awaiting it,
        but whatever it produces is discarded instead of cached.
        """
        self._generation += 1
        self._token = None
        self._pending = None
        logger.debug("CSRF token cleared")

    # ================================
    # Acquisition
    # ================================

    def _start_acquisition(self) -> asyncio.Task[CSRFToken]:
        task = asyncio.create_task(
            self._acquire(self._generation), name="csrf_token_acquisition"
        )
        task.add_done_callback(self._on_acquisition_done)
        return task

    async def _acquire(self, generation: int) -> CSRFToken:
        try:
            token = await self._fetcher.fetch_token()
        except BaseException:
            if generation == self._generation:
                self._pending = None
            raise

        if generation == self._generation:
            self._token = token
            self._pending = None
        else:
            logger.debug("Discarding CSRF token from a superseded acquisition")
        return token

    def _on_acquisition_done(self, task: asyncio.Task[CSRFToken]) -> None:
        # Retrieve the exception so an acquisition nobody awaits any more
        # does not trigger "exception was never retrieved"
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"CSRF token acquisition failed: {error}")


# ================================
# Process-wide instance
# ================================

_store: CSRFTokenStore | None = None


def install_token_store(store: CSRFTokenStore) -> CSRFTokenStore:
    """Make ``store`` the process-wide token store and return it."""
    global _store
    _store = store
    return store


def get_token_store() -> CSRFTokenStore:
    """Return the process-wide token store.

    Raises:
        CSRFConfigurationError: If no store has been installed yet
    """
    if _store is None:
        raise CSRFConfigurationError(
            "No CSRF token store installed - call install_token_store() first"
        )
    return _store


def reset_token_store() -> None:
    """Remove the process-wide token store."""
    global _store
    _store = None
