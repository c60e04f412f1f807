"""CSRF token state and token endpoint response models.

Tokens live in process memory only. Nothing here knows how to persist
itself, so every new process starts without a token.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict

DEFAULT_TOKEN_TTL = timedelta(hours=24)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class CSRFToken:
    """The header half of a double-submit token pair.

    The matching secret travels in an HttpOnly cookie that this package
    never reads.
    """

    value: str
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the token can no longer be sent.

        Args:
            now: Reference time, defaults to the current UTC time
        """
        if now is None:
            now = utc_now()
        return now >= self.expires_at

    def __repr__(self) -> str:
        # Keep the token value out of logs and tracebacks
        return f"CSRFToken(value='***', expires_at={self.expires_at.isoformat()})"


class TokenResponse(BaseModel):
    """Body returned by the token endpoint on a GET."""

    model_config = ConfigDict(extra="ignore")

    csrf_token: str | None = None
    expires_at: datetime | None = None

    def has_token(self) -> bool:
        return bool(self.csrf_token)

    def to_token(
        self,
        default_ttl: timedelta = DEFAULT_TOKEN_TTL,
        now: datetime | None = None,
    ) -> CSRFToken:
        """Convert the response into a CSRFToken.

        A missing expiry is replaced with ``now + default_ttl`` so the
        token always has a deadline.

        Raises:
            ValueError: If the response carries no token
        """
        if not self.has_token():
            raise ValueError("Cannot convert a response without csrf_token")

        if self.expires_at is None:
            expires_at = (now or utc_now()) + default_ttl
        else:
            expires_at = ensure_utc(self.expires_at)

        return CSRFToken(value=self.csrf_token, expires_at=expires_at)


class TokenValidationResponse(BaseModel):
    """Body returned by the token endpoint on a validation POST."""

    model_config = ConfigDict(extra="ignore")

    valid: bool = False
    error: str | None = None
