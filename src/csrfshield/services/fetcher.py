"""CSRF token endpoint client.

One call to ``fetch_token`` is exactly one round trip to the token
endpoint. Caching and deduplication live in the token store.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import httpx
from pydantic import ValidationError

from csrfshield.auth import CredentialProvider
from csrfshield.models.errors import (
    CSRFError,
    MalformedResponseError,
    NetworkFailureError,
    ServerRejectionError,
    UnauthenticatedError,
)
from csrfshield.models.tokens import (
    DEFAULT_TOKEN_TTL,
    CSRFToken,
    TokenResponse,
    TokenValidationResponse,
)

logger = logging.getLogger(__name__)


class TokenFetcher:
    """Talks to the server endpoint that issues CSRF tokens.

    The endpoint sets an HttpOnly cookie holding the correlated secret as
    a side effect of the GET. Pass the same ``httpx.AsyncClient`` used for
    protected calls so that cookie lands in the jar those calls send.
    """

    def __init__(
        self,
        endpoint: str,
        credentials: CredentialProvider,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        default_ttl: timedelta = DEFAULT_TOKEN_TTL,
        header_name: str = "X-CSRF-Token",
    ):
        """Initialize the token fetcher.

        Args:
            endpoint: Token endpoint URL
            credentials: Source of the user's bearer credential
            http_client: Shared client; one is created (and owned) if omitted
            timeout: HTTP request timeout in seconds for an owned client
            default_ttl: Lifetime assumed when the server omits expires_at
            header_name: Header used when asking the server to validate a token
        """
        self.endpoint = endpoint
        self.default_ttl = default_ttl
        self.header_name = header_name
        self._credentials = credentials
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def fetch_token(self) -> CSRFToken:
        """Request a fresh token from the endpoint.

        Returns:
            CSRFToken: The new token with an absolute expiry

        Raises:
            UnauthenticatedError: If no credential is available (no request is sent)
            NetworkFailureError: If the endpoint cannot be reached
            ServerRejectionError: If the endpoint answers with an error status
            MalformedResponseError: If a success response lacks the token
        """
        access_token = await self._read_access_token()
        if not access_token:
            raise UnauthenticatedError(
                "User not authenticated - please sign in to continue"
            )

        logger.debug(f"Fetching CSRF token from {self.endpoint}")

        try:
            response = await self._http_client.get(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise NetworkFailureError(f"HTTP error fetching CSRF token: {e}") from e
        except Exception as e:
            raise CSRFError(f"Unexpected error fetching CSRF token: {e}") from e

        return self._parse_token_response(response)

    async def _read_access_token(self) -> str | None:
        """Ask the credential provider for the bearer token.

        A provider that fails (its session backend is down, for instance)
        is reported as UnauthenticatedError, never as a raw exception.
        """
        try:
            return await self._credentials.get_access_token()
        except CSRFError:
            raise
        except Exception as e:
            raise UnauthenticatedError(
                f"Could not read the user's session: {e}"
            ) from e

    def _parse_token_response(self, response: httpx.Response) -> CSRFToken:
        """Turn an endpoint response into a token or a typed error."""
        if not response.is_success:
            raise ServerRejectionError(
                self._rejection_message(response), response.status_code
            )

        try:
            token_response = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(
                f"Invalid CSRF token response format: {e}"
            ) from e

        if not token_response.has_token():
            raise MalformedResponseError("Invalid CSRF token response - token missing")

        if token_response.expires_at is None:
            logger.debug(
                f"Token response has no expires_at, assuming {self.default_ttl}"
            )

        logger.info("CSRF token acquired")
        return token_response.to_token(default_ttl=self.default_ttl)

    def _rejection_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"Failed to fetch CSRF token (status: {response.status_code})"

        message = body.get("error") if isinstance(body, dict) else None
        if isinstance(message, str) and message:
            return message
        return "Failed to fetch CSRF token"

    async def validate_token(self, token: str) -> bool:
        """Ask the server whether a token is still accepted.

        Advisory only: the server re-checks every protected call anyway,
        so every failure here is reported as ``False``.
        """
        try:
            access_token = await self._read_access_token()
        except CSRFError as e:
            logger.warning(f"CSRF token validation skipped: {e}")
            return False
        if not access_token:
            return False

        try:
            response = await self._http_client.post(
                self.endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                    self.header_name: token,
                },
                json={"csrf_token": token},
            )
            if not response.is_success:
                logger.debug(f"Token validation refused with {response.status_code}")
                return False
            return TokenValidationResponse.model_validate(response.json()).valid
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.warning(f"CSRF token validation failed: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._http_client.aclose()
