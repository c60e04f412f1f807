"""Configuration for the CSRF protection layer."""

from __future__ import annotations

import os
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from csrfshield.models.errors import CSRFConfigurationError


class CSRFConfig(BaseModel):
    """Settings shared by the fetcher, store, augmenter and coordinator.

    ``refresh_interval`` must stay strictly below ``default_ttl`` so the
    periodic refresh always runs before a token issued without an explicit
    expiry would lapse.
    """

    token_endpoint: str
    header_name: str = "X-CSRF-Token"
    form_field: str = "csrf_token"
    default_ttl: timedelta = Field(default=timedelta(hours=24))
    refresh_interval: timedelta = Field(default=timedelta(hours=20))
    timeout: float = 30.0

    @field_validator("token_endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("token_endpoint must be an http(s) URL")
        return value

    @field_validator("default_ttl", "refresh_interval")
    @classmethod
    def _check_positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("durations must be positive")
        return value

    @model_validator(mode="after")
    def _check_refresh_inside_ttl(self) -> CSRFConfig:
        if self.refresh_interval >= self.default_ttl:
            raise ValueError("refresh_interval must be shorter than default_ttl")
        return self

    @classmethod
    def from_env(cls, prefix: str = "CSRF_", dotenv: bool = True) -> CSRFConfig:
        """Build a config from environment variables.

        Reads ``<prefix>TOKEN_ENDPOINT`` (required), ``<prefix>HEADER_NAME``,
        ``<prefix>FORM_FIELD``, ``<prefix>DEFAULT_TTL_SECONDS``,
        ``<prefix>REFRESH_INTERVAL_SECONDS`` and ``<prefix>TIMEOUT``.

        Args:
            prefix: Environment variable prefix
            dotenv: Load a ``.env`` file first when True

        Raises:
            CSRFConfigurationError: If the endpoint is missing
        """
        if dotenv:
            load_dotenv()

        endpoint = os.getenv(f"{prefix}TOKEN_ENDPOINT")
        if not endpoint:
            raise CSRFConfigurationError(f"{prefix}TOKEN_ENDPOINT is not set")

        values: dict[str, object] = {"token_endpoint": endpoint}
        if header_name := os.getenv(f"{prefix}HEADER_NAME"):
            values["header_name"] = header_name
        if form_field := os.getenv(f"{prefix}FORM_FIELD"):
            values["form_field"] = form_field
        if ttl := os.getenv(f"{prefix}DEFAULT_TTL_SECONDS"):
            values["default_ttl"] = timedelta(seconds=float(ttl))
        if interval := os.getenv(f"{prefix}REFRESH_INTERVAL_SECONDS"):
            values["refresh_interval"] = timedelta(seconds=float(interval))
        if timeout := os.getenv(f"{prefix}TIMEOUT"):
            values["timeout"] = float(timeout)

        return cls(**values)
