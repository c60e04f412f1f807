"""Attach the CSRF token to outgoing protected requests.

Augmentation fails open: if no token can be obtained the request goes out
without the header and a warning is logged. The server rejects any
mutation lacking a valid token, so this only trades a local error for a
server-side rejection. It never opens a forgery hole.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Generator

import httpx

from csrfshield.models.errors import CSRFError, CSRFRejectedError
from csrfshield.models.requests import RequestOptions
from csrfshield.services.store import CSRFTokenStore, get_token_store

logger = logging.getLogger(__name__)

DEFAULT_HEADER_NAME = "X-CSRF-Token"


async def _try_get_token(store: CSRFTokenStore | None) -> str | None:
    try:
        if store is None:
            store = get_token_store()
        return await store.get_token()
    except CSRFError as e:
        logger.warning(f"Failed to add CSRF token to request: {e}")
        return None
    except Exception as e:
        # Custom token sources are not bound to raise CSRFError
        logger.warning(
            f"Failed to add CSRF token to request: unexpected error: {e}",
            exc_info=True,
        )
        return None


async def add_csrf_token(
    options: RequestOptions | None = None,
    store: CSRFTokenStore | None = None,
    header_name: str = DEFAULT_HEADER_NAME,
) -> RequestOptions:
    """Return a copy of ``options`` carrying the CSRF header and cookies.

    Args:
        options: Request to protect; an empty POST if omitted
        store: Token store, defaults to the process-wide one
        header_name: Header the server reads the token from

    Returns:
        RequestOptions: Always marked ``with_credentials``; carries the
        header when a token was available. Never raises for token failures.
    """
    options = (options or RequestOptions()).including_credentials()

    token = await _try_get_token(store)
    if token is None:
        return options

    return options.with_header(header_name, token)


async def secure_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    options: RequestOptions | None = None,
    store: CSRFTokenStore | None = None,
    header_name: str = DEFAULT_HEADER_NAME,
) -> httpx.Response:
    """Send a protected request through ``client``.

    ``client`` must be the one the token fetcher uses so the cookie set by
    the token endpoint is in the jar it sends.

    Raises:
        ValueError: If ``options`` names a different method than ``method``
    """
    if options is None:
        options = RequestOptions(method=method)
    elif options.method.upper() != method.upper():
        raise ValueError(
            f"Conflicting request methods: {method} and {options.method} in options"
        )
    secured = await add_csrf_token(options, store=store, header_name=header_name)

    request = secured.build_request(client, url)
    logger.debug(f"Sending protected {request.method} {url}")
    return await client.send(request)


def is_csrf_rejection(response: httpx.Response) -> bool:
    """Check whether the server refused a request over its CSRF token."""
    if response.status_code not in (401, 403):
        return False
    try:
        body = response.json()
    except ValueError:
        return "csrf" in response.text.lower()

    if isinstance(body, dict):
        message = body.get("error") or body.get("message") or ""
        return "csrf" in str(message).lower()
    return False


def raise_for_csrf_rejection(response: httpx.Response) -> httpx.Response:
    """Raise CSRFRejectedError if the server refused the CSRF token.

    Callers catching it can show ``error.user_message`` and decide
    themselves whether to refresh the token and retry.
    """
    if is_csrf_rejection(response):
        raise CSRFRejectedError(
            f"Request to {response.request.url} rejected: invalid CSRF token",
            response=response,
        )
    return response


class CSRFAuth(httpx.Auth):
    """httpx auth flow that adds the CSRF header to every request.

    Usage::

        client = httpx.AsyncClient(auth=CSRFAuth(store))

    Safe (read-only) methods are left alone. Like ``add_csrf_token`` it
    fails open.
    """

    safe_methods = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

    def __init__(
        self,
        store: CSRFTokenStore | None = None,
        header_name: str = DEFAULT_HEADER_NAME,
    ):
        self._store = store
        self.header_name = header_name

    def sync_auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("CSRFAuth requires httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        if request.method not in self.safe_methods:
            token = await _try_get_token(self._store)
            if token is not None:
                request.headers[self.header_name] = token
        yield request
