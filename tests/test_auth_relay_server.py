"""Unit tests for the localhost message relay."""

# pylint: disable=consider-using-with

from __future__ import annotations

import asyncio

from urllib.parse import urlencode

import httpx
import pytest

from identikit.auth.flow import PopupFlowOrchestrator
from identikit.auth.relay_server import MessageRelayServer, envelope_from_query
from identikit.auth.token_store import TokenStore
from identikit.state.types import AuthorizationRequest, MessageEnvelope, now_ms
from tests.fakes import FakeHost


@pytest.fixture()
def relay():
    """Running relay server."""
    server = MessageRelayServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture()
def http():
    """HTTP client that ignores proxy settings."""
    with httpx.Client(trust_env=False) as client:
        yield client


class TestEnvelopeFromQuery:
    """Tests for query-string envelopes."""

    def test_success_query(self) -> None:
        """A success redirect becomes a valid envelope."""
        envelope = envelope_from_query(
            urlencode({"success": "true", "session_id": "tok", "username": "amy", "user_id": "3"})
        )
        parsed = MessageEnvelope.parse(envelope)
        assert parsed is not None
        assert parsed.success
        assert parsed.data == {"sessionId": "tok", "user": {"id": "3", "username": "amy"}}

    def test_failure_query(self) -> None:
        """A failure redirect keeps error and message."""
        envelope = envelope_from_query(urlencode({"success": "0", "error": "access_denied", "message": "No"}))
        assert envelope["success"] is False
        assert envelope["error"] == "access_denied"
        assert envelope["message"] == "No"
        assert "data" not in envelope


class TestMessageRelayServer:
    """Tests for MessageRelayServer over real HTTP."""

    def test_start_and_stop(self) -> None:
        """Server binds an ephemeral port and stops cleanly."""
        server = MessageRelayServer()
        base_url = server.start()
        assert base_url.startswith("http://127.0.0.1:")
        assert server.running
        assert server.message_url == f"{base_url}/message"
        server.stop()
        assert not server.running

    def test_post_message_is_relayed(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """A JSON POST reaches every subscriber."""
        received: list[dict] = []
        relay.subscribe(received.append)
        payload = {"success": True, "timestamp": now_ms(), "data": {"sessionId": "tok"}}

        response = http.post(relay.message_url, json=payload)

        assert response.status_code == 202
        assert response.json() == {"accepted": True}
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert received == [payload]

    def test_invalid_json_rejected(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """Malformed bodies are rejected and not relayed."""
        received: list[dict] = []
        relay.subscribe(received.append)
        response = http.post(relay.message_url, content=b"{oops", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert received == []

    def test_empty_body_rejected(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """A POST without a body is rejected."""
        response = http.post(relay.message_url)
        assert response.status_code == 400

    def test_callback_redirect(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """A GET to /callback relays the query and shows a success page."""
        received: list[dict] = []
        relay.subscribe(received.append)

        response = http.get(f"{relay.callback_url}?{urlencode({'success': 'true', 'session_id': 'tok-cb'})}")

        assert response.status_code == 200
        assert "Login Complete" in response.text
        assert received[0]["data"]["sessionId"] == "tok-cb"

    def test_callback_failure_page_escapes_message(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """Failure details are HTML-escaped."""
        query = urlencode({"success": "false", "message": "<script>x</script>"})
        response = http.get(f"{relay.callback_url}?{query}")
        assert "Login Failed" in response.text
        assert "<script>x</script>" not in response.text
        assert "&lt;script&gt;" in response.text

    def test_waiting_page_and_404(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """Root shows a waiting page; other paths are 404."""
        assert "Waiting for login" in http.get(relay.base_url + "/").text
        assert http.get(relay.base_url + "/elsewhere").status_code == 404
        assert http.post(relay.base_url + "/elsewhere", json={}).status_code == 404

    def test_preflight(self, relay: MessageRelayServer, http: httpx.Client) -> None:
        """OPTIONS answers CORS preflight."""
        response = http.options(relay.message_url)
        assert response.status_code == 204
        assert "POST" in response.headers["Access-Control-Allow-Methods"]

    def test_context_manager(self) -> None:
        """The relay can be used as a context manager."""
        with MessageRelayServer() as server:
            assert server.running
        assert not server.running


class TestRelayDrivesOrchestrator:
    """The relay as the orchestrator's message channel."""

    @pytest.mark.asyncio
    async def test_callback_completes_login(self, relay: MessageRelayServer, token_store: TokenStore) -> None:
        """A browser redirect to /callback finishes a popup login."""
        host = FakeHost()
        orchestrator = PopupFlowOrchestrator(
            token_store, host, channel=relay, timeout=5.0, blocked_check_delay=0.0, closed_check_interval=0.01
        )
        task = asyncio.create_task(
            orchestrator.run(AuthorizationRequest(provider="google", authorization_url="https://accounts.google.com/o"))
        )
        await asyncio.sleep(0.02)

        query = urlencode({"success": "true", "session_id": "tok-relay", "username": "gina"})
        async with httpx.AsyncClient(trust_env=False) as client:
            response = await client.get(f"{relay.callback_url}?{query}")
        assert response.status_code == 200

        result = await task
        assert result.session_token == "tok-relay"
        assert result.user.username == "gina"
        assert token_store.get_token() == "tok-relay"
        assert relay.listener_count == 0
