"""Build request bodies that carry the CSRF token as a field.

For submissions that do not go through the header augmenter, such as
multipart uploads. Unlike the augmenter these builders fail closed: a
body is never produced without a token.
"""

from __future__ import annotations

import io
import json
import logging
from typing import Any, Mapping

from csrfshield.models.errors import MalformedResponseError
from csrfshield.models.requests import SecureFormData
from csrfshield.services.store import CSRFTokenStore, get_token_store

logger = logging.getLogger(__name__)

DEFAULT_FIELD_NAME = "csrf_token"

_BINARY_TYPES = (bytes, bytearray, memoryview, io.IOBase)


def _is_binary(value: Any) -> bool:
    """True for raw bytes, file objects and httpx-style file tuples."""
    if isinstance(value, _BINARY_TYPES):
        return True
    if isinstance(value, tuple) and 2 <= len(value) <= 4:
        filename, content = value[0], value[1]
        return (filename is None or isinstance(filename, str)) and isinstance(
            content, _BINARY_TYPES
        )
    return False


def encode_field(value: Any) -> str:
    """Encode a non-binary form value as text.

    Structured values become canonical JSON (sorted keys, no whitespace)
    so the server can decode them deterministically.
    """
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, bool):
        return json.dumps(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


async def _require_token(store: CSRFTokenStore | None) -> str:
    if store is None:
        store = get_token_store()
    token = await store.get_token()
    if not token:
        raise MalformedResponseError("Refusing to build a payload with an empty CSRF token")
    return token


async def create_secure_form_data(
    data: Mapping[str, Any],
    store: CSRFTokenStore | None = None,
    field_name: str = DEFAULT_FIELD_NAME,
) -> SecureFormData:
    """Build form data with the CSRF token embedded.

    Args:
        data: Field values; binary values become file parts
        store: Token store, defaults to the process-wide one
        field_name: Name of the token field

    Returns:
        SecureFormData: Text fields (token included) and file parts

    Raises:
        CSRFError: If no token can be obtained
    """
    token = await _require_token(store)

    fields: dict[str, str] = {}
    files: dict[str, Any] = {}
    for key, value in data.items():
        if key == field_name:
            logger.debug(f"Overriding caller-supplied {field_name} field")
            continue
        if _is_binary(value):
            files[key] = value
        else:
            fields[key] = encode_field(value)

    fields[field_name] = token
    return SecureFormData(fields=fields, files=files)


async def create_secure_json(
    data: Mapping[str, Any],
    store: CSRFTokenStore | None = None,
    field_name: str = DEFAULT_FIELD_NAME,
) -> dict[str, Any]:
    """Return a shallow copy of ``data`` with the CSRF token added."""
    token = await _require_token(store)
    if field_name in data:
        logger.debug(f"Overriding caller-supplied {field_name} field")
    return {**data, field_name: token}
