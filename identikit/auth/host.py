"""Host environment capabilities used by the popup orchestrator.

The orchestrator never touches a windowing system directly. A
``WindowHost`` opens popups and performs full-page redirects, a
``PopupHandle`` reports and controls one opened window, and a
``MessageChannel`` delivers cross-window messages. Adapters for the
system browser and an in-process channel live here; the local HTTP relay
is in ``relay_server``.
"""

# pylint: disable=unnecessary-ellipsis

from __future__ import annotations

import itertools
import logging
import threading
import webbrowser

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Callable

    MessageListener = Callable[[Any], None]


logger = logging.getLogger("identikit.auth")


@dataclass(frozen=True)
class PopupFeatures:
    """Window features requested for an authentication popup."""

    width: int = 500
    height: int = 600
    scrollbars: bool = True
    resizable: bool = True
    location: bool = True

    def to_feature_string(self) -> str:
        """Render as a ``window.open`` style feature string."""
        flags = {
            "scrollbars": self.scrollbars,
            "resizable": self.resizable,
            "location": self.location,
        }
        parts = [f"width={self.width}", f"height={self.height}"]
        parts.extend(f"{name}={'yes' if value else 'no'}" for name, value in flags.items())
        return ",".join(parts)


class PopupHandle(ABC):
    """An opened authentication window."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Whether the window has been closed (by the user or by ``close``)."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the window if it is still open."""
        ...


class WindowHost(ABC):
    """Capabilities of the page that starts a login."""

    @abstractmethod
    def open_popup(self, url: str, name: str, features: PopupFeatures) -> PopupHandle | None:
        """Open a detached window at ``url``.

        Returns
        -------
        PopupHandle or None
            ``None`` (or raising) means the popup was blocked.
        """
        ...

    @abstractmethod
    def navigate(self, url: str) -> None:
        """Replace the current page with ``url`` (full-page redirect)."""
        ...

    @property
    @abstractmethod
    def current_url(self) -> str:
        """Location of the current page, used as the post-redirect return URL."""
        ...


class MessageChannel(ABC):
    """Generic inbound cross-window message subscription."""

    @abstractmethod
    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        """Register a listener for raw payloads; returns an unsubscribe callable."""
        ...

    @abstractmethod
    def post(self, payload: Any) -> None:
        """Deliver a payload to every current listener."""
        ...


class InProcessMessageChannel(MessageChannel):
    """Message channel whose sender and receiver share a process.

    Listeners run on the posting thread; the orchestrator re-schedules
    delivery onto its own event loop.
    """

    def __init__(self) -> None:
        """Initialize the channel."""
        self._listeners: dict[int, MessageListener] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()

    @property
    def listener_count(self) -> int:
        """Number of registered listeners."""
        with self._lock:
            return len(self._listeners)

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        """Register a listener."""
        with self._lock:
            listener_id = next(self._ids)
            self._listeners[listener_id] = listener

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return unsubscribe

    def post(self, payload: Any) -> None:
        """Deliver ``payload`` to all listeners."""
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Message listener failed")


class BrowserTab(PopupHandle):
    """A system browser tab opened for authentication.

    The browser does not report tab closure, so the handle only reads as
    closed once ``close`` has been called.
    """

    def __init__(self, url: str) -> None:
        """Initialize the tab handle."""
        self.url = url
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether ``close`` has been called."""
        return self._closed

    def close(self) -> None:
        """Mark the tab closed; the browser keeps it open for the user."""
        self._closed = True


class SystemBrowserHost(WindowHost):
    """Window host backed by the user's default web browser.

    Parameters
    ----------
    return_url : str
        Reported as the current page location.
    opener : callable, optional
        Replaces ``webbrowser.open``; must return True on success.
    """

    def __init__(
        self,
        return_url: str = "",
        opener: Callable[..., bool] | None = None,
    ) -> None:
        """Initialize the browser host."""
        self._return_url = return_url
        self._open = opener or webbrowser.open

    @property
    def current_url(self) -> str:
        """The configured return URL."""
        return self._return_url

    def open_popup(self, url: str, name: str, features: PopupFeatures) -> PopupHandle | None:
        """Open ``url`` in a new browser window."""
        logger.debug("Opening %s in the system browser (%s)", name, features.to_feature_string())
        if not self._open(url, new=1):
            return None
        return BrowserTab(url)

    def navigate(self, url: str) -> None:
        """Open ``url`` in the current browser tab."""
        if not self._open(url, new=0):
            logger.info("Open this URL to authenticate: %s", url)
