"""End-to-end tests against a fake double-submit token server.

The server issues a header token plus an HttpOnly cookie secret and
rejects protected calls whose header does not correlate with the cookie.
"""

import pytest

from csrfshield.auth import AuthEventBus, StaticCredentialProvider
from csrfshield.config import CSRFConfig
from csrfshield.models.errors import CSRFRejectedError, UnauthenticatedError
from csrfshield.models.events import AuthEvent
from csrfshield.models.requests import RequestOptions
from csrfshield.protection import CSRFProtection
from csrfshield.services.augmenter import raise_for_csrf_rejection
from csrfshield.services.store import TokenStoreState, get_token_store

TOKEN_ENDPOINT = "https://app.test/functions/v1/csrf-token"


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider("user-jwt")


@pytest.fixture
def bus() -> AuthEventBus:
    return AuthEventBus()


@pytest.fixture
async def protection(asgi_client, credentials, bus):
    protection = CSRFProtection(
        CSRFConfig(token_endpoint=TOKEN_ENDPOINT),
        credentials,
        events=bus,
        http_client=asgi_client,
    )
    await protection.start(prefetch=False)
    yield protection
    await protection.close()


class TestProtectedCalls:
    async def test_protected_call_passes_double_submit_check(
        self, protection, token_server
    ):
        # Act
        response = await protection.request(
            "POST", "/api/profile", RequestOptions(json={"display_name": "Ada"})
        )

        # Assert
        assert response.status_code == 200
        assert response.json()["profile"] == {"display_name": "Ada"}
        assert token_server.issued == 1

    async def test_token_is_reused_across_calls(self, protection, token_server):
        # Act
        for _ in range(3):
            response = await protection.request(
                "POST", "/api/profile", RequestOptions(json={})
            )
            assert response.status_code == 200

        # Assert
        assert token_server.issued == 1

    async def test_json_payload_submission(self, protection, asgi_client):
        # Arrange
        payload = await protection.json_payload({"content": "Grateful today"})

        # Act
        response = await asgi_client.post("/api/journal", json=payload)

        # Assert
        assert response.status_code == 200

    async def test_server_validates_issued_token(self, protection):
        # Arrange
        await protection.get_token()

        # Act & Assert
        assert await protection.validate_token() is True
        assert await protection.validate_token("not-the-token") is False

    async def test_missing_expiry_still_usable(self, protection, token_server):
        # Arrange
        token_server.omit_expiry = True

        # Act
        await protection.get_token()

        # Assert
        assert protection.store.state == TokenStoreState.CACHED

    async def test_installs_process_wide_store(self, protection):
        assert get_token_store() is protection.store


class TestSessionTransitions:
    async def test_sign_out_then_protected_call_is_rejected(
        self, protection, credentials, bus
    ):
        # Arrange
        await protection.get_token()
        credentials.access_token = None

        # Act
        await bus.emit(AuthEvent.SIGNED_OUT)
        response = await protection.request(
            "POST", "/api/profile", RequestOptions(json={})
        )

        # Assert - sent without a token, so the server refuses it
        assert protection.store.state == TokenStoreState.EMPTY
        with pytest.raises(CSRFRejectedError) as exc_info:
            raise_for_csrf_rejection(response)
        assert "Session expired" in exc_info.value.user_message

    async def test_sign_in_acquires_token_for_new_session(
        self, protection, credentials, bus, token_server
    ):
        # Arrange
        credentials.access_token = None
        with pytest.raises(UnauthenticatedError):
            await protection.get_token()

        # Act
        credentials.access_token = "user-jwt"
        await bus.emit(AuthEvent.SIGNED_IN)
        await protection.coordinator.wait_for_pending()

        # Assert
        assert token_server.issued == 1
        response = await protection.request(
            "POST", "/api/profile", RequestOptions(json={})
        )
        assert response.status_code == 200
        assert token_server.issued == 1

    async def test_close_clears_everything(self, asgi_client, credentials, bus):
        # Arrange
        protection = CSRFProtection(
            CSRFConfig(token_endpoint=TOKEN_ENDPOINT),
            credentials,
            events=bus,
            http_client=asgi_client,
        )
        await protection.start(prefetch=True)
        await protection.coordinator.wait_for_pending()

        # Act
        await protection.close()

        # Assert
        assert protection.store.state == TokenStoreState.EMPTY
        assert bus.listener_count == 0
        assert not asgi_client.is_closed
