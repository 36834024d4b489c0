"""Tests for server-side session operations."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

import httpx
import pytest

from identikit.auth.session import SessionManager
from identikit.auth.token_store import TokenStore
from identikit.state.types import UserInfo
from tests.fakes import json_response


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


@pytest.fixture()
def signed_in(token_store: TokenStore) -> TokenStore:
    """Token store holding a session token."""
    token_store.set_token("tok-live")
    return token_store


def _manager(make_api, token_store: TokenStore, handler) -> SessionManager:
    return SessionManager(make_api(handler), token_store)


class TestVerifySession:
    """Tests for SessionManager.verify_session."""

    def test_valid_session_keeps_token(self, make_api, signed_in: TokenStore) -> None:
        """A valid verdict leaves the token alone."""
        manager = _manager(make_api, signed_in, lambda r: json_response(200, {"valid": True}))
        response = _run(manager.verify_session())
        assert response.success
        assert signed_in.get_token() == "tok-live"

    def test_invalid_session_clears_token(self, make_api, signed_in: TokenStore) -> None:
        """valid=false clears the local token."""
        manager = _manager(make_api, signed_in, lambda r: json_response(200, {"valid": False}))
        _run(manager.verify_session())
        assert signed_in.get_token() is None

    def test_failed_request_clears_token(self, make_api, signed_in: TokenStore) -> None:
        """Any failed verification clears the local token."""
        manager = _manager(make_api, signed_in, lambda r: json_response(500, {"error": "server_error"}))
        response = _run(manager.verify_session())
        assert not response.success
        assert signed_in.get_token() is None

    def test_empty_success_keeps_token(self, make_api, signed_in: TokenStore) -> None:
        """A success without a verdict body is not treated as invalid."""
        manager = _manager(make_api, signed_in, lambda r: httpx.Response(204))
        _run(manager.verify_session())
        assert signed_in.get_token() == "tok-live"

    def test_is_logged_in_is_local(self, make_api, signed_in: TokenStore) -> None:
        """is_logged_in consults only the token store."""
        calls: list[httpx.Request] = []
        manager = _manager(make_api, signed_in, lambda r: calls.append(r) or json_response(200, {}))
        assert manager.is_logged_in()
        assert calls == []


class TestCurrentUser:
    """Tests for SessionManager.get_current_user."""

    def test_returns_user_info(self, make_api, signed_in: TokenStore) -> None:
        """The /auth/me payload is parsed into UserInfo."""
        body = {
            "user": {"id": "u9", "username": "kit", "platform": "google", "isAdmin": False},
            "hasCharacter": True,
            "character": {"name": "Scum"},
        }
        manager = _manager(make_api, signed_in, lambda r: json_response(200, body))
        response = _run(manager.get_current_user())

        assert response.success
        assert isinstance(response.data, UserInfo)
        assert response.data.user.username == "kit"
        assert response.data.has_character
        assert response.data.character == {"name": "Scum"}

    def test_unauthorized_clears_token(self, make_api, signed_in: TokenStore) -> None:
        """A 401 from /auth/me signs the user out."""
        manager = _manager(make_api, signed_in, lambda r: json_response(401, {}))
        response = _run(manager.get_current_user())
        assert response.error == "authentication_required"
        assert signed_in.get_token() is None


class TestLogout:
    """Tests for SessionManager.logout."""

    def test_logout_deletes_session(self, make_api, signed_in: TokenStore) -> None:
        """Logout sends DELETE /auth/session and clears the token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return json_response(200, {"message": "Logged out"})

        _run(_manager(make_api, signed_in, handler).logout())

        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/auth/session"
        assert seen[0].headers["Authorization"] == "Bearer tok-live"
        assert signed_in.get_token() is None

    def test_logout_clears_token_when_server_fails(self, make_api, signed_in: TokenStore) -> None:
        """The local token is cleared even if the server call fails."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        response = _run(_manager(make_api, signed_in, handler).logout())
        assert not response.success
        assert signed_in.get_token() is None
