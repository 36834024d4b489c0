"""Session token store with persistence and expiry.

Holds the single process-wide session token in memory, mirrors it into a
durable key-value storage together with the time it was persisted, and
announces every mutation through an ``AuthStateBroadcaster``.

Storage is best-effort: when the backend is unavailable the store keeps
working in memory for the rest of the process.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..exceptions import StorageError
from ..state.types import SessionToken, now_ms
from .broadcaster import AuthStateBroadcaster


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..state.base import KeyValueStorage
    from .broadcaster import AuthStateListener


logger = logging.getLogger("identikit.auth")

TOKEN_KEY = "identikit_auth_token"  # noqa: S105
TOKEN_TIMESTAMP_KEY = "identikit_auth_token_timestamp"  # noqa: S105

#: Thirty days, in milliseconds.
DEFAULT_MAX_AGE_MS = 30 * 24 * 60 * 60 * 1000


class TokenStore:
    """Owner of the current session token.

    Parameters
    ----------
    storage : KeyValueStorage, optional
        Durable storage for the token and its timestamp. ``None`` keeps the
        token in memory only.
    max_age_ms : float
        Maximum age of a persisted token before it is treated as absent.
    clock : callable, optional
        Returns the current time in epoch milliseconds.
    runtime_hook : callable, optional
        Host notification hook passed to the broadcaster.
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        max_age_ms: float = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], float] | None = None,
        runtime_hook: AuthStateListener | None = None,
    ) -> None:
        """Initialize the token store."""
        self._storage = storage
        self.max_age_ms = max_age_ms
        self._clock = clock or now_ms
        self._token: SessionToken | None = None
        self._initialized = False
        self.broadcaster = AuthStateBroadcaster(self.peek_token, runtime_hook=runtime_hook)

    @property
    def persistent(self) -> bool:
        """Whether a durable storage backend is in use."""
        return self._storage is not None

    @property
    def session_token(self) -> SessionToken | None:
        """The current token together with its persisted timestamp."""
        self.get_token()
        return self._token

    def initialize(self) -> None:
        """Restore an unexpired persisted token. Safe to call repeatedly."""
        if self._initialized:
            return
        self._initialized = True

        if self._storage is None:
            return

        try:
            value = self._storage.get_item(TOKEN_KEY)
            raw_timestamp = self._storage.get_item(TOKEN_TIMESTAMP_KEY)
        except StorageError as exc:
            logger.warning("Token storage unavailable, continuing in memory: %s", exc)
            self._storage = None
            return

        if value is None:
            if raw_timestamp is not None:
                self._purge()
            return

        try:
            persisted_at = float(raw_timestamp) if raw_timestamp is not None else None
        except ValueError:
            persisted_at = None

        if persisted_at is None:
            logger.info("Persisted token has no valid timestamp, discarding it")
            self._purge()
            return

        token = SessionToken(value=value, persisted_at=persisted_at)
        if token.is_expired(self.max_age_ms, now=self._clock()):
            logger.info("Persisted token expired, discarding it")
            self._purge()
            return

        self._token = token
        logger.debug("Restored persisted session token")

    def set_token(self, token: str) -> None:
        """Adopt a new session token, persist it, and notify listeners.

        Parameters
        ----------
        token : str
            The session token returned by the identity service.
        """
        if not isinstance(token, str) or not token:
            msg = "Session token must be a non-empty string"
            raise ValueError(msg)

        self._initialized = True
        self._token = SessionToken(value=token, persisted_at=self._clock())

        if self._storage is not None:
            try:
                self._storage.set_item(TOKEN_KEY, token)
                self._storage.set_item(TOKEN_TIMESTAMP_KEY, str(int(self._token.persisted_at)))
            except StorageError as exc:
                logger.warning("Could not persist session token: %s", exc)

        self.broadcaster.notify()

    def clear_token(self) -> None:
        """Drop the session token from memory and storage, and notify listeners."""
        self._initialized = True
        self._token = None
        self._purge()
        self.broadcaster.notify()

    def get_token(self) -> str | None:
        """Return the current token, initializing lazily.

        A token that has aged past ``max_age_ms`` while held in memory is
        cleared on read.
        """
        self.initialize()
        if self._token is None:
            return None
        if self._token.is_expired(self.max_age_ms, now=self._clock()):
            logger.info("Session token expired")
            self.clear_token()
            return None
        return self._token.value

    def peek_token(self) -> str | None:
        """Return the in-memory token without expiry handling."""
        self.initialize()
        return self._token.value if self._token is not None else None

    def is_authenticated(self) -> bool:
        """Whether a session token is currently held."""
        return self.get_token() is not None

    def subscribe(self, listener: AuthStateListener) -> Callable[[], None]:
        """Shortcut for ``self.broadcaster.subscribe``."""
        return self.broadcaster.subscribe(listener)

    def _purge(self) -> None:
        """Remove persisted entries, logging storage failures."""
        if self._storage is None:
            return
        try:
            self._storage.remove_item(TOKEN_KEY)
            self._storage.remove_item(TOKEN_TIMESTAMP_KEY)
        except StorageError as exc:
            logger.warning("Could not remove persisted session token: %s", exc)
