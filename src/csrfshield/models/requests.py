"""Outgoing request descriptions used by the augmenter and payload builder."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

import httpx


@dataclass(frozen=True)
class RequestOptions:
    """Everything about an outgoing request except its URL.

    Mirrors the keyword arguments of ``httpx.AsyncClient.request`` so an
    augmented request can be sent without translation. ``with_credentials``
    controls whether the shared cookie jar travels with the request.
    """

    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] | None = None
    content: bytes | str | None = None
    data: dict[str, Any] | None = None
    json: Any = None
    files: dict[str, Any] | None = None
    with_credentials: bool = False

    def with_header(self, name: str, value: str) -> RequestOptions:
        """Return a copy with one header set, replacing any case variant."""
        headers = {k: v for k, v in self.headers.items() if k.lower() != name.lower()}
        headers[name] = value
        return replace(self, headers=headers)

    def including_credentials(self) -> RequestOptions:
        return replace(self, with_credentials=True)

    def to_httpx_kwargs(self) -> dict[str, Any]:
        """Convert to keyword arguments for ``httpx.AsyncClient.build_request``.

        Body arguments that are unset are left out so httpx does not see
        conflicting ``content``/``data``/``json`` values.
        """
        kwargs: dict[str, Any] = {"headers": dict(self.headers)}
        if self.params is not None:
            kwargs["params"] = self.params
        if self.content is not None:
            kwargs["content"] = self.content
        if self.data is not None:
            kwargs["data"] = self.data
        if self.json is not None:
            kwargs["json"] = self.json
        if self.files is not None:
            kwargs["files"] = self.files
        return kwargs

    def build_request(self, client: httpx.AsyncClient, url: str) -> httpx.Request:
        """Build the request on ``client``, honouring ``with_credentials``.

        The client merges its cookie jar into every request it builds, so
        the ``Cookie`` header is removed again for uncredentialed requests.
        """
        request = client.build_request(self.method, url, **self.to_httpx_kwargs())
        if not self.with_credentials:
            request.headers.pop("Cookie", None)
        return request


@dataclass(frozen=True)
class SecureFormData:
    """Form body carrying the CSRF token as a regular field.

    Text values are already encoded as strings. Binary parts are kept
    untouched in ``files`` for multipart submission.
    """

    fields: dict[str, str]
    files: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return self.fields.get(name)

    def to_httpx_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"data": dict(self.fields)}
        if self.files:
            kwargs["files"] = dict(self.files)
        return kwargs
