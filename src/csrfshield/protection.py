"""Application-level entry point for CSRF protection.

Wires configuration, the shared HTTP client, the token fetcher, the
process-wide token store and the lifecycle coordinator together.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from csrfshield.auth import AuthEventSource, CredentialProvider
from csrfshield.config import CSRFConfig
from csrfshield.models.errors import CSRFConfigurationError
from csrfshield.models.requests import RequestOptions, SecureFormData
from csrfshield.services.augmenter import CSRFAuth, add_csrf_token, secure_request
from csrfshield.services.fetcher import TokenFetcher
from csrfshield.services.lifecycle import TokenLifecycleCoordinator
from csrfshield.services.payloads import create_secure_form_data, create_secure_json
from csrfshield.services.store import (
    CSRFTokenStore,
    get_token_store,
    install_token_store,
    reset_token_store,
)

logger = logging.getLogger(__name__)


class CSRFProtection:
    """CSRF protection for one application process.

    Usage::

        protection = CSRFProtection(config, credentials, auth_events)
        await protection.start()
        response = await protection.request("POST", "/api/profile", options)
        ...
        await protection.close()

    The HTTP client is shared between token acquisition and protected
    calls, so the HttpOnly cookie set by the token endpoint is sent along
    with every protected call.
    """

    def __init__(
        self,
        config: CSRFConfig,
        credentials: CredentialProvider,
        events: AuthEventSource | None = None,
        http_client: httpx.AsyncClient | None = None,
        install: bool = True,
    ):
        """Initialize CSRF protection.

        Args:
            config: Endpoint, header/field names and timing
            credentials: Source of the user's bearer credential
            events: Auth event source; without one no lifecycle coordination runs
            http_client: Shared client; one is created (and owned) if omitted
            install: Install the token store as the process-wide instance
        """
        self.config = config
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.timeout)

        self.fetcher = TokenFetcher(
            config.token_endpoint,
            credentials,
            http_client=self.http_client,
            default_ttl=config.default_ttl,
            header_name=config.header_name,
        )
        self.store = CSRFTokenStore(self.fetcher)
        self.coordinator = (
            TokenLifecycleCoordinator(self.store, events, config.refresh_interval)
            if events is not None
            else None
        )

        if install:
            install_token_store(self.store)

    async def start(self, prefetch: bool = True) -> None:
        """Start lifecycle coordination, optionally acquiring a token now."""
        if self.coordinator is not None:
            await self.coordinator.start(prefetch=prefetch)

    async def get_token(self) -> str:
        return await self.store.get_token()

    async def refresh_token(self) -> str:
        return await self.store.refresh_token()

    def clear_token(self) -> None:
        self.store.clear_token()

    async def validate_token(self, token: str | None = None) -> bool:
        """Ask the server whether a token (the cached one by default) is accepted."""
        if token is None:
            current = self.store.current_token
            if current is None:
                return False
            token = current.value
        return await self.fetcher.validate_token(token)

    async def add_csrf_token(
        self, options: RequestOptions | None = None
    ) -> RequestOptions:
        return await add_csrf_token(
            options, store=self.store, header_name=self.config.header_name
        )

    async def request(
        self,
        method: str,
        url: str,
        options: RequestOptions | None = None,
    ) -> httpx.Response:
        """Send a protected request through the shared client."""
        return await secure_request(
            self.http_client,
            method,
            url,
            options,
            store=self.store,
            header_name=self.config.header_name,
        )

    async def form_data(self, data: Mapping[str, Any]) -> SecureFormData:
        return await create_secure_form_data(
            data, store=self.store, field_name=self.config.form_field
        )

    async def json_payload(self, data: Mapping[str, Any]) -> dict[str, Any]:
        return await create_secure_json(
            data, store=self.store, field_name=self.config.form_field
        )

    def auth(self) -> CSRFAuth:
        """An httpx auth flow bound to this instance's store."""
        return CSRFAuth(self.store, header_name=self.config.header_name)

    async def close(self) -> None:
        """Stop coordination, drop the token and release the HTTP client."""
        if self.coordinator is not None:
            await self.coordinator.stop()
        self.store.clear_token()

        try:
            if get_token_store() is self.store:
                reset_token_store()
        except CSRFConfigurationError:
            pass

        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> CSRFProtection:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
