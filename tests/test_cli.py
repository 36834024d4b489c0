"""Tests for CLI module.

Tests the command-line interface for identikit logins and configuration.
"""

# pylint: disable=redefined-outer-name

import argparse
import contextlib
import json
import sys

from io import StringIO
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from identikit import cli
from identikit.auth.token_store import TOKEN_KEY, TOKEN_TIMESTAMP_KEY
from identikit.client import IdentikitClient
from identikit.config import IdentikitSettings, get_settings
from identikit.state.file import FileStorage
from identikit.state.memory import MemoryStorage
from identikit.state.types import now_ms
from tests.fakes import FakeHost, json_response


@pytest.fixture()
def service_requests(monkeypatch):
    """Route CLI clients to a scripted service; returns the request log."""
    requests: list[httpx.Request] = []
    storage = MemoryStorage()
    answers = {
        ("POST", "/auth/newgrounds/authenticate"): (200, {"sessionId": "tok-ng", "user": {"username": "newbie"}}),
        ("GET", "/auth/me"): (
            200,
            {"user": {"id": "1", "username": "newbie", "platform": "newgrounds"}, "hasCharacter": False},
        ),
        ("DELETE", "/auth/session"): (200, {}),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = answers.get((request.method, request.url.path), (404, {"error": "not_found"}))
        return json_response(status, body)

    def build(settings=None, **kwargs):
        kwargs.setdefault("host", FakeHost())
        return IdentikitClient.from_settings(
            settings or get_settings(),
            transport=httpx.MockTransport(handler),
            storage=storage,
            **kwargs,
        )

    monkeypatch.setattr(cli, "_build_client", build)
    return requests


class TestMainEntryPoint:
    """Tests for CLI main entry point."""

    def test_no_args_prints_help_text(self):
        """Running with no args prints help text with usage info."""
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = cli.main([])

        output = mock_stdout.getvalue()
        assert result == 0
        assert "usage:" in output.lower()
        assert "login" in output
        assert "newgrounds" in output

    def test_help_flag_shows_usage(self):
        """--help flag shows usage information."""
        with (
            patch.object(sys, "argv", ["identikit", "--help"]),
            patch("sys.stdout", new_callable=StringIO) as mock_stdout,
            contextlib.suppress(SystemExit),
        ):
            cli.main()

        assert "identikit" in mock_stdout.getvalue()

    def test_login_rejects_unknown_provider(self):
        """argparse restricts the provider choices."""
        with (
            patch("sys.stderr", new_callable=StringIO),
            pytest.raises(SystemExit),
        ):
            cli.main(["login", "steam"])


class TestHandleConfig:
    """Tests for the config command."""

    def test_show_is_default(self):
        """Without a flag the table is shown."""
        args = argparse.Namespace(show=False, toml=False, env=False, sources=False, output=None)
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = cli.handle_config(args)
        assert result == 0
        assert "identikit Configuration" in mock_stdout.getvalue()

    def test_toml_to_file(self, tmp_path):
        """--toml --output writes a loadable TOML file."""
        target = tmp_path / "out.toml"
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = cli.main(["config", "--toml", "-o", str(target)])
        assert result == 0
        assert "[auth]" in target.read_text(encoding="utf-8")
        assert str(target) in mock_stdout.getvalue()

    def test_env_export(self):
        """--env prints export lines."""
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            cli.main(["config", "--env"])
        assert "export IDENTIKIT_AUTH__MAX_ATTEMPTS" in mock_stdout.getvalue()

    def test_sources(self):
        """--sources reports which files are in effect."""
        Path("identikit.toml").write_text("[api]\ntimeout = 5\n", encoding="utf-8")
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = cli.main(["config", "--sources"])
        output = mock_stdout.getvalue()
        assert result == 0
        assert "./identikit.toml" in output
        assert "✓ Found" in output


class TestStatus:
    """Tests for the status command against real file storage."""

    def test_not_logged_in(self):
        """An empty store reports signed out with exit code 1."""
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = cli.main(["status"])
        assert result == 1
        assert "Not logged in" in mock_stdout.getvalue()

    def test_logged_in(self):
        """A fresh persisted token reports signed in."""
        storage = FileStorage(IdentikitSettings().storage.path)
        storage.set_item(TOKEN_KEY, "tok-file")
        storage.set_item(TOKEN_TIMESTAMP_KEY, str(int(now_ms())))

        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            result = cli.main(["status"])
        assert result == 0
        assert "Logged in" in mock_stdout.getvalue()


class TestSessionCommands:
    """Tests for newgrounds, whoami and logout."""

    def test_newgrounds_then_whoami_then_logout(self, service_requests):
        """A session id exchange signs in; logout signs out."""
        with patch("sys.stdout", new_callable=StringIO) as mock_stdout:
            assert cli.main(["newgrounds", "ng-123"]) == 0
            assert cli.main(["whoami"]) == 0
            assert cli.main(["logout"]) == 0
            assert cli.main(["whoami"]) == 1

        output = mock_stdout.getvalue()
        assert "Logged in as newbie" in output
        assert "User:      newbie (1)" in output
        assert "Logged out" in output
        assert json.loads(service_requests[0].content) == {"session_id": "ng-123"}
        assert [r.method for r in service_requests] == ["POST", "GET", "DELETE"]

    def test_newgrounds_failure_exit_code(self, service_requests):
        """A failed exchange exits with 1."""
        with (
            patch("sys.stdout", new_callable=StringIO),
            patch("sys.stderr", new_callable=StringIO) as mock_stderr,
        ):
            result = cli.main(["newgrounds", "   "])
        assert result == 1
        assert "validation_error" in mock_stderr.getvalue()
        assert service_requests == []
