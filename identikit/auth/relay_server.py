"""Ephemeral localhost HTTP relay for cross-window auth messages.

Desktop stand-in for the browser's cross-window messaging: the page that
finishes the provider login delivers its result envelope either by
POSTing JSON to ``/message`` or by redirecting to ``/callback`` with the
result in query parameters. Every accepted payload is posted to the
relay's subscribers.

Uses only stdlib (http.server, threading, urllib.parse).
"""

# pylint: disable=logging-too-many-args,C0103,W0212

from __future__ import annotations

import html
import json
import logging
import threading

from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from ..state.types import now_ms
from .host import InProcessMessageChannel


logger = logging.getLogger("identikit.auth")

_MAX_BODY_BYTES = 64 * 1024

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  p { color: #666; }
"""

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>{title}</title><style>{style}</style></head>
<body><div class="card">
  <h1>{heading}</h1>
  <p>{body}</p>
</div></body></html>"""


def _page(title: str, heading: str, body: str) -> str:
    return _PAGE_TEMPLATE.format(
        title=title,
        style=_PAGE_STYLE,
        heading=heading,
        body=html.escape(body, quote=True),
    )


_SUCCESS_HTML = _page("Login Complete", "&#x2705; Login Complete", "You can close this window.")
_WAITING_HTML = _page(
    "Waiting for Login",
    "Waiting for login&hellip;",
    "Please complete the login in the browser window.",
)


def _truthy(value: str | None) -> bool:
    return (value or "").lower() in {"1", "true", "yes"}


def envelope_from_query(query: str) -> dict[str, Any]:
    """Build a message envelope from ``/callback`` query parameters.

    Recognized parameters: ``success``, ``session_id`` (or ``sessionId``),
    ``error``, ``message``, ``user_id``, ``username``, ``platform``.
    """
    params = {key: values[0] for key, values in parse_qs(query).items() if values}
    session_id = params.get("session_id") or params.get("sessionId")

    data: dict[str, Any] = {}
    if session_id:
        data["sessionId"] = session_id
    user = {
        key: params[name]
        for key, name in (("id", "user_id"), ("username", "username"), ("platform", "platform"))
        if name in params
    }
    if user:
        data["user"] = user

    envelope: dict[str, Any] = {
        "success": _truthy(params.get("success")),
        "timestamp": now_ms(),
    }
    if data:
        envelope["data"] = data
    if params.get("error"):
        envelope["error"] = params["error"]
    if params.get("message"):
        envelope["message"] = params["message"]
    return envelope


class MessageRelayServer(InProcessMessageChannel):
    """Localhost HTTP server that relays auth envelopes to subscribers.

    Parameters
    ----------
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for auto-assign).
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        """Initialize the relay server."""
        super().__init__()
        self._host = host
        self._port = port
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._actual_port: int = 0

    @property
    def base_url(self) -> str:
        """Root URL of the running server."""
        return f"http://{self._host}:{self._actual_port}"

    @property
    def message_url(self) -> str:
        """Endpoint accepting JSON envelopes via POST."""
        return f"{self.base_url}/message"

    @property
    def callback_url(self) -> str:
        """Endpoint accepting results as query parameters via GET."""
        return f"{self.base_url}/callback"

    @property
    def running(self) -> bool:
        """Whether the server thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> str:
        """Start the relay server on a daemon thread.

        Returns
        -------
        str
            The base URL of the server.
        """
        relay = self

        class _RelayHandler(BaseHTTPRequestHandler):
            """HTTP request handler for relayed auth messages."""

            def do_OPTIONS(self) -> None:
                """Answer CORS preflight for cross-origin POSTs."""
                self.send_response(204)
                self._send_cors_headers()
                self.send_header("Content-Length", "0")
                self.end_headers()

            def do_POST(self) -> None:
                """Accept a JSON envelope."""
                if urlparse(self.path).path != "/message":
                    self.send_error(404)
                    return

                length = int(self.headers.get("Content-Length") or 0)
                if length <= 0 or length > _MAX_BODY_BYTES:
                    self._send_json(400, {"accepted": False, "error": "invalid_length"})
                    return
                try:
                    payload = json.loads(self.rfile.read(length))
                except (ValueError, UnicodeDecodeError):
                    self._send_json(400, {"accepted": False, "error": "invalid_json"})
                    return

                relay.post(payload)
                self._send_json(202, {"accepted": True})

            def do_GET(self) -> None:
                """Accept a result redirect, or show the waiting page."""
                parsed = urlparse(self.path)
                if parsed.path == "/callback":
                    envelope = envelope_from_query(parsed.query)
                    relay.post(envelope)
                    if envelope["success"]:
                        self._send_html(_SUCCESS_HTML)
                    else:
                        detail = envelope.get("message") or envelope.get("error") or "Unknown error"
                        self._send_html(_page("Login Failed", "&#x274C; Login Failed", detail))
                elif parsed.path == "/":
                    self._send_html(_WAITING_HTML)
                else:
                    self.send_error(404)

            def _send_cors_headers(self) -> None:
                self.send_header("Access-Control-Allow-Origin", "*")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
                self.send_header("Access-Control-Allow-Headers", "Content-Type")

            def _send_json(self, status: int, body: dict[str, Any]) -> None:
                encoded = json.dumps(body).encode("utf-8")
                self.send_response(status)
                self._send_cors_headers()
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.end_headers()
                self.wfile.write(encoded)

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the identikit logger."""
                if args:
                    logger.debug("Message relay: %s", args[0] % args[1:])

        self._server = ThreadingHTTPServer((self._host, self._port), _RelayHandler)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Message relay started on %s", self.base_url)
        return self.base_url

    def stop(self) -> None:
        """Shut down the relay server."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None

    def __enter__(self) -> MessageRelayServer:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
