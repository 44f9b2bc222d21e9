"""
Unit tests for the authentication context.
"""

from unittest.mock import AsyncMock

import pytest

from auctionz_shared.exceptions import AuthenticationError, NetworkError
from auctionz_client.api_client import APIClientError
from auctionz_client.auth.auth_context import AuthContext
from auctionz_client.auth.token_storage import MemoryStorage, TokenStore

LOGIN_PAYLOAD = {
    "user": {"id": 9, "email": "seller@example.com", "first_name": "Grace", "role": "seller"},
    "access_token": "access-9",
    "refresh_token": "refresh-9",
    "session_id": "sess-9",
}


@pytest.fixture
def empty_context(gateway):
    return AuthContext(TokenStore(MemoryStorage()), gateway)


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_stores_credential(self, empty_context, gateway):
        gateway.login_payload = LOGIN_PAYLOAD
        changes = []
        empty_context.add_auth_callback(changes.append)

        user = await empty_context.login("seller@example.com", "pw")

        assert user.id == "9"
        assert user.display_name == "Grace"
        assert empty_context.is_authenticated
        assert empty_context.token_store.get_session_id() == "sess-9"
        assert changes == [True]
        assert not empty_context.loading

    @pytest.mark.asyncio
    async def test_incomplete_payload_is_rejected(self, empty_context, gateway):
        gateway.login_payload = {"user": {"id": 9}, "access_token": "a"}

        with pytest.raises(AuthenticationError):
            await empty_context.login("seller@example.com", "pw")

        assert not empty_context.is_authenticated
        assert empty_context.token_store.get() is None
        assert empty_context.last_error == "Login failed. Please check your credentials."

    @pytest.mark.asyncio
    async def test_server_message_becomes_last_error(self, empty_context, gateway):
        gateway.register = AsyncMock(side_effect=APIClientError(
            "Request failed (400)", status_code=400, response_data={"error": "Email already registered"}
        ))

        with pytest.raises(APIClientError):
            await empty_context.register({"email": "seller@example.com", "password": "pw"})

        assert empty_context.last_error == "Email already registered"

    @pytest.mark.asyncio
    async def test_register_stores_credential(self, empty_context, gateway):
        gateway.login_payload = LOGIN_PAYLOAD

        await empty_context.register({"email": "seller@example.com", "password": "pw"})

        assert empty_context.is_authenticated
        assert gateway.calls == [("register", "seller@example.com")]


class TestProfileAndLogout:

    def test_restore_picks_up_stored_token(self, token_store, gateway):
        context = AuthContext(token_store, gateway)

        assert context.restore()
        assert context.token == token_store.get_access_token()
        assert not context.is_authenticated

    @pytest.mark.asyncio
    async def test_fetch_user(self, token_store, gateway):
        context = AuthContext(token_store, gateway)

        user = await context.fetch_user()

        assert user.email == "buyer@example.com"
        assert context.is_authenticated

    @pytest.mark.asyncio
    async def test_fetch_user_without_credential(self, empty_context, gateway):
        assert await empty_context.fetch_user() is None
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_fetch_user_failure_logs_out(self, auth_context, gateway, token_store):
        gateway.get_profile = AsyncMock(side_effect=AuthenticationError("token rejected"))

        with pytest.raises(AuthenticationError):
            await auth_context.fetch_user()

        assert gateway.calls == [("logout", "sess-42")]
        assert token_store.get() is None
        assert not auth_context.is_authenticated

    @pytest.mark.asyncio
    async def test_logout_clears_even_when_remote_fails(self, auth_context, gateway, token_store):
        gateway.logout_error = NetworkError("offline")
        changes = []
        auth_context.add_auth_callback(changes.append)

        await auth_context.logout()

        assert token_store.get() is None
        assert auth_context.user is None
        assert changes == [False]

    @pytest.mark.asyncio
    async def test_logout_all(self, auth_context, gateway, token_store):
        await auth_context.logout_all()

        assert gateway.calls == [("logout_all",)]
        assert token_store.get() is None

    def test_token_refresh_updates_token(self, auth_context):
        auth_context.on_token_refreshed("fresh")

        assert auth_context.token == "fresh"

    def test_clear_user_notifies_once(self, auth_context):
        changes = []
        auth_context.add_auth_callback(changes.append)

        auth_context.clear_user()
        auth_context.clear_user()

        assert changes == [False]
