"""Authentication events the lifecycle coordinator reacts to."""

from __future__ import annotations

from enum import Enum


class AuthEvent(str, Enum):
    """Transitions emitted by the authentication collaborator."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
