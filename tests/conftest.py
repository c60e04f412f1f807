import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Callable

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from csrfshield.models.tokens import CSRFToken, utc_now
from csrfshield.services.store import reset_token_store

BASE_URL = "https://app.test"
TOKEN_PATH = "/functions/v1/csrf-token"
VALID_ACCESS_TOKEN = "user-jwt"


class FakeFetcher:
    """Token source that counts calls and can be held open or made to fail."""

    def __init__(
        self,
        values: list[str] | None = None,
        error: Exception | None = None,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.calls = 0
        self.values = list(values or [])
        self.error = error
        self.ttl = ttl
        self.clock = clock
        self.gate: asyncio.Event | None = None

    def hold(self) -> asyncio.Event:
        """Make every fetch wait until the returned event is set."""
        self.gate = asyncio.Event()
        return self.gate

    async def fetch_token(self) -> CSRFToken:
        self.calls += 1
        call = self.calls
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        value = self.values.pop(0) if self.values else f"token-{call}"
        return CSRFToken(value=value, expires_at=self.clock() + self.ttl)


class FakeTokenServer:
    """Minimal double-submit server: token endpoint plus protected routes."""

    def __init__(self):
        self.issued = 0
        # cookie secret -> header token
        self.pairs: dict[str, str] = {}
        self.omit_expiry = False
        self.app = Starlette(
            routes=[
                Route(TOKEN_PATH, self.issue_token, methods=["GET"]),
                Route(TOKEN_PATH, self.validate_token, methods=["POST"]),
                Route("/api/profile", self.update_profile, methods=["POST"]),
                Route("/api/journal", self.save_journal, methods=["POST"]),
            ]
        )

    def _authorized(self, request: Request) -> bool:
        return request.headers.get("authorization") == f"Bearer {VALID_ACCESS_TOKEN}"

    def _pair_matches(self, request: Request, token: str | None) -> bool:
        secret = request.cookies.get("csrf_secret")
        return bool(secret and token and self.pairs.get(secret) == token)

    async def issue_token(self, request: Request) -> JSONResponse:
        if not self._authorized(request):
            return JSONResponse({"error": "Invalid token"}, status_code=401)

        self.issued += 1
        secret = secrets.token_hex(16)
        token = secrets.token_hex(32)
        self.pairs[secret] = token

        body = {"csrf_token": token}
        if not self.omit_expiry:
            body["expires_at"] = (utc_now() + timedelta(hours=24)).isoformat()
        response = JSONResponse(body)
        response.set_cookie(
            "csrf_secret", secret, httponly=True, secure=True, samesite="strict"
        )
        return response

    async def validate_token(self, request: Request) -> JSONResponse:
        if not self._authorized(request):
            return JSONResponse({"error": "Invalid token"}, status_code=401)
        body = await request.json()
        return JSONResponse({"valid": self._pair_matches(request, body.get("csrf_token"))})

    async def update_profile(self, request: Request) -> JSONResponse:
        if not self._pair_matches(request, request.headers.get("x-csrf-token")):
            return JSONResponse(
                {"error": "CSRF token validation failed"}, status_code=403
            )
        return JSONResponse({"ok": True, "profile": await request.json()})

    async def save_journal(self, request: Request) -> JSONResponse:
        body = await request.json()
        if not self._pair_matches(request, body.get("csrf_token")):
            return JSONResponse(
                {"error": "CSRF token validation failed"}, status_code=403
            )
        return JSONResponse({"ok": True})


@pytest.fixture(autouse=True)
def isolated_token_store():
    reset_token_store()
    yield
    reset_token_store()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_fetcher() -> Callable[..., FakeFetcher]:
    return FakeFetcher


@pytest.fixture
def token_server() -> FakeTokenServer:
    return FakeTokenServer()


@pytest.fixture
async def asgi_client(token_server: FakeTokenServer):
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=token_server.app), base_url=BASE_URL
    )
    yield client
    await client.aclose()
