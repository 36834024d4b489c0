"""Tests for authorization URL acquisition with retry."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio

import httpx
import pytest

from identikit.auth.acquisition import (
    AuthorizationUrlAcquirer,
    exponential_delay,
    linear_delay,
)
from identikit.config import AuthSettings
from identikit.state.types import AuthorizationRequest, AuthResult
from tests.fakes import json_response


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class _Sleeper:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture()
def sleeper() -> _Sleeper:
    """Delay recorder."""
    return _Sleeper()


def _acquirer(api, sleeper: _Sleeper, max_attempts: int = 3) -> AuthorizationUrlAcquirer:
    return AuthorizationUrlAcquirer(api, max_attempts=max_attempts, retry_delay=1.0, sleep=sleeper)


class TestDelays:
    """Tests for the backoff helpers."""

    def test_linear(self) -> None:
        """Linear delay grows with the attempt number."""
        assert [linear_delay(1.0, n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_exponential_is_capped(self) -> None:
        """Exponential delay doubles up to the cap."""
        assert [exponential_delay(1.0, n, 5.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


class TestAcquire:
    """Tests for AuthorizationUrlAcquirer.acquire."""

    def test_success_first_attempt(self, make_api, sleeper: _Sleeper) -> None:
        """A URL on the first try is returned without sleeping."""
        api = make_api(lambda r: json_response(200, {"authUrl": "https://itch.io/oauth?a=1"}))
        result = _run(_acquirer(api, sleeper).acquire("itchio"))
        assert isinstance(result, AuthorizationRequest)
        assert result.provider == "itchio"
        assert result.authorization_url == "https://itch.io/oauth?a=1"
        assert result.poll_id is None
        assert sleeper.delays == []

    def test_google_endpoint(self, make_api, sleeper: _Sleeper) -> None:
        """Google uses its own authorization-url endpoint."""
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return json_response(200, {"authUrl": "https://accounts.google.com/o/oauth2"})

        _run(_acquirer(make_api(handler), sleeper).acquire("google"))
        assert paths == ["/auth/google/authorization-url"]

    def test_unknown_provider(self, make_api, sleeper: _Sleeper) -> None:
        """Unsupported providers fail without any request."""
        calls: list[httpx.Request] = []
        api = make_api(lambda r: calls.append(r) or json_response(200, {}))
        result = _run(_acquirer(api, sleeper).acquire("myspace"))
        assert isinstance(result, AuthResult)
        assert result.error_kind == "validation_error"
        assert calls == []

    def test_polling_fetches_poll_id_once(self, make_api, sleeper: _Sleeper) -> None:
        """The poll id is obtained once and reused across retries."""
        calls: list[str] = []
        url_attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if request.url.path == "/auth/oauth/poll-id":
                return json_response(200, {"pollId": "poll-7"})
            url_attempts["n"] += 1
            if url_attempts["n"] < 2:
                return json_response(500, {"error": "server_error"})
            assert request.url.params["poll_id"] == "poll-7"
            return json_response(200, {"authUrl": "https://itch.io/oauth"})

        result = _run(_acquirer(make_api(handler), sleeper).acquire("itchio", use_polling=True))
        assert isinstance(result, AuthorizationRequest)
        assert result.poll_id == "poll-7"
        assert calls.count("/auth/oauth/poll-id") == 1
        assert sleeper.delays == [1.0]

    def test_application_errors_back_off_linearly(self, make_api, sleeper: _Sleeper) -> None:
        """Server errors wait 1s, 2s, 3s between four attempts."""
        api = make_api(lambda r: json_response(500, {"error": "server_error", "message": "boom"}))
        result = _run(_acquirer(api, sleeper, max_attempts=4).acquire("itchio"))
        assert isinstance(result, AuthResult)
        assert not result.success
        assert result.error_kind == "server_error"
        assert result.message == "boom"
        assert sleeper.delays == [1.0, 2.0, 3.0]

    def test_network_errors_back_off_exponentially(self, make_api, sleeper: _Sleeper) -> None:
        """Transport failures wait 1s, 2s, 4s between four attempts."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = _run(_acquirer(make_api(handler), sleeper, max_attempts=4).acquire("itchio"))
        assert isinstance(result, AuthResult)
        assert result.error_kind == "network_error"
        assert result.message == "Failed to connect to Itch.io after multiple attempts"
        assert sleeper.delays == [1.0, 2.0, 4.0]

    def test_exhaustion_makes_exactly_max_attempts(self, make_api, sleeper: _Sleeper) -> None:
        """Three failing attempts, then a structured failure."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        result = _run(_acquirer(make_api(handler), sleeper).acquire("google"))
        assert len(calls) == 3
        assert result.message == "Failed to connect to Google after multiple attempts"

    def test_timeout_kind_survives_exhaustion(self, make_api, sleeper: _Sleeper) -> None:
        """Repeated timeouts report request_timeout, not network_error."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = _run(_acquirer(make_api(handler), sleeper).acquire("itchio"))
        assert result.error_kind == "request_timeout"
        assert result.message == "Failed to connect to Itch.io after multiple attempts"
        assert sleeper.delays == [1.0, 2.0]

    def test_unauthorized_is_not_retried(self, make_api, sleeper: _Sleeper) -> None:
        """authentication_required ends acquisition immediately."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return json_response(401, {})

        result = _run(_acquirer(make_api(handler), sleeper).acquire("itchio"))
        assert result.error_kind == "authentication_required"
        assert len(calls) == 1
        assert sleeper.delays == []

    def test_missing_url_is_retried(self, make_api, sleeper: _Sleeper) -> None:
        """A 200 without a URL counts as a failed attempt."""
        responses = iter([{"unexpected": True}, {"url": "https://itch.io/oauth"}])
        api = make_api(lambda r: json_response(200, next(responses)))
        result = _run(_acquirer(api, sleeper).acquire("itchio"))
        assert isinstance(result, AuthorizationRequest)
        assert result.authorization_url == "https://itch.io/oauth"

    def test_poll_id_failure_is_retried(self, make_api, sleeper: _Sleeper) -> None:
        """A failed poll-id request is retried like any other failure."""
        answers = iter(
            [
                json_response(500, {"error": "server_error"}),
                json_response(200, {"pollId": "p2"}),
                json_response(200, {"authUrl": "https://itch.io/oauth", "expiresAt": "2030-01-01T00:00:00Z"}),
            ]
        )
        api = make_api(lambda r: next(answers))
        result = _run(_acquirer(api, sleeper).acquire("itchio", use_polling=True))
        assert isinstance(result, AuthorizationRequest)
        assert result.poll_id == "p2"
        assert result.expires_at is not None
        assert result.expires_at.year == 2030

    def test_from_settings(self, make_api) -> None:
        """Retry policy comes from the auth settings section."""
        settings = AuthSettings(max_attempts=5, retry_delay=0.5, max_retry_delay=4.0)
        acquirer = AuthorizationUrlAcquirer.from_settings(make_api(lambda r: json_response(200, {})), settings)
        assert acquirer.max_attempts == 5
        assert acquirer.retry_delay == 0.5
        assert acquirer.max_retry_delay == 4.0
