"""Auth state change fan-out.

Every token store mutation is delivered to all subscribers, in
registration order, followed by one runtime hook for the host
application's own notification channel.
"""

from __future__ import annotations

import itertools
import logging

from typing import TYPE_CHECKING

from ..log import log_listener_error


if TYPE_CHECKING:
    from collections.abc import Callable

    AuthStateListener = Callable[[bool, str | None], None]


logger = logging.getLogger("identikit.auth")


class AuthStateBroadcaster:
    """Listener registry for authenticated/unauthenticated transitions.

    Parameters
    ----------
    current_token : callable
        Returns the token currently held by the store (``None`` when
        signed out).
    runtime_hook : callable, optional
        Single host-level hook called after all listeners.
    """

    def __init__(
        self,
        current_token: Callable[[], str | None],
        runtime_hook: AuthStateListener | None = None,
    ) -> None:
        """Initialize the broadcaster."""
        self._current_token = current_token
        self._runtime_hook = runtime_hook
        self._listeners: dict[int, AuthStateListener] = {}
        self._ids = itertools.count()

    @property
    def listener_count(self) -> int:
        """Number of registered listeners (the runtime hook excluded)."""
        return len(self._listeners)

    def set_runtime_hook(self, hook: AuthStateListener | None) -> None:
        """Replace the runtime notification hook."""
        self._runtime_hook = hook

    def subscribe(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register a listener and deliver the current state to it immediately.

        Parameters
        ----------
        listener : callable
            Called as ``listener(is_authenticated, token)``.

        Returns
        -------
        callable
            Unsubscribe handle; calling it more than once is harmless.
        """
        listener_id = next(self._ids)
        self._listeners[listener_id] = listener

        token = self._current_token()
        self._deliver(listener, token is not None, token)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        return unsubscribe

    def notify(self) -> None:
        """Deliver the current state to every listener, then the runtime hook."""
        token = self._current_token()
        is_authenticated = token is not None
        logger.debug(
            "Auth state changed: authenticated=%s, %d listener(s)",
            is_authenticated,
            len(self._listeners),
        )

        # Snapshot so listeners may unsubscribe during delivery
        for listener in list(self._listeners.values()):
            self._deliver(listener, is_authenticated, token)

        if self._runtime_hook is not None:
            self._deliver(self._runtime_hook, is_authenticated, token)

    @staticmethod
    def _deliver(listener: AuthStateListener, is_authenticated: bool, token: str | None) -> None:
        """Call one listener, logging rather than propagating its failure."""
        try:
            listener(is_authenticated, token)
        except Exception as exc:  # noqa: BLE001
            log_listener_error(listener, exc)
