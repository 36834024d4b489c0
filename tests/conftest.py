"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os

from typing import TYPE_CHECKING

import httpx
import pytest

from identikit.api_client import ApiClient
from identikit.auth.token_store import TokenStore
from identikit.config import clear_settings
from identikit.state.memory import MemoryStorage
from tests.fakes import BASE_URL, Clock, FakeHost


if TYPE_CHECKING:
    from collections.abc import Callable


# ── Isolation ───────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep config files, env vars and the user config dir out of tests."""
    for key in list(os.environ):
        if key.startswith("IDENTIKIT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    clear_settings()
    yield
    clear_settings()


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def storage() -> MemoryStorage:
    """Durable storage stand-in."""
    return MemoryStorage()


@pytest.fixture()
def session_storage() -> MemoryStorage:
    """Redirect recovery storage."""
    return MemoryStorage()


@pytest.fixture()
def clock() -> Clock:
    """Adjustable clock."""
    return Clock()


@pytest.fixture()
def token_store(storage: MemoryStorage) -> TokenStore:
    """Token store over memory storage."""
    return TokenStore(storage)


@pytest.fixture()
def host() -> FakeHost:
    """Host that opens popups."""
    return FakeHost()


@pytest.fixture()
def make_api(token_store: TokenStore) -> Callable[..., ApiClient]:
    """Factory for an ApiClient answering through ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> ApiClient:
        return ApiClient(token_store, BASE_URL, transport=httpx.MockTransport(handler))

    return _make
