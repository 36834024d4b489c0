"""Popup/poll authentication orchestrator.

Drives one popup-based OAuth attempt to exactly one ``AuthResult``. Once
the popup is open, up to four completion sources race:

- a cross-window message carrying a result envelope,
- a status poll against ``/auth/oauth/poll/{poll_id}``,
- a watchdog noticing the user closed the popup,
- a hard timeout.

The first to produce a result wins through a single resolve guard; all
timers, tasks, the message subscription and the popup are torn down
before the caller sees the result. When the popup cannot be opened the
attempt falls back to a full-page redirect, leaving enough state in
session storage to resume after the round trip.
"""

# pylint: disable=logging-too-many-args,too-many-instance-attributes

from __future__ import annotations

import asyncio
import logging
import secrets

from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from ..exceptions import PopupBlockedError, StateSetupError, StorageError
from ..state.types import (
    ApiResponse,
    AttemptState,
    AuthErrorKind,
    AuthorizationRequest,
    AuthResult,
    MessageEnvelope,
    OrchestrationAttempt,
    RedirectState,
    now_ms,
)
from .host import PopupFeatures


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..api_client import ApiClient
    from ..config import AuthSettings
    from ..state.base import KeyValueStorage
    from .host import MessageChannel, PopupHandle, WindowHost
    from .token_store import TokenStore


logger = logging.getLogger("identikit.auth")

STATE_KEY = "identikit_oauth_state"
RETURN_URL_KEY = "identikit_oauth_return_url"
POLL_ID_KEY = "identikit_oauth_poll_id"
PROVIDER_KEY = "identikit_oauth_provider"
REDIRECT_STATE_KEY = "identikit_oauth_redirect_state"

POLL_PATH = "/auth/oauth/poll/{poll_id}"


class PopupFlowOrchestrator:
    """Runs popup-based logins against a host environment.

    Parameters
    ----------
    token_store : TokenStore
        Receives the session token of a successful attempt.
    host : WindowHost
        Opens popups and performs redirects.
    client : ApiClient, optional
        Used for status polling; without it only messages complete a login.
    channel : MessageChannel, optional
        Cross-window message source; without it only polling completes a login.
    session_storage : KeyValueStorage, optional
        Short-lived storage for the correlation token and redirect state.
    timeout : float
        Seconds before an attempt resolves as ``timeout`` (default 300).
    poll_interval : float
        Seconds between status polls.
    closed_check_interval : float
        Seconds between popup-closed checks.
    blocked_check_delay : float
        Seconds after opening before the popup is checked for being blocked.
    message_max_age : float
        Messages older than this many seconds are ignored.
    popup_features : PopupFeatures, optional
        Size and chrome of the popup.
    clock : callable, optional
        Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        token_store: TokenStore,
        host: WindowHost,
        client: ApiClient | None = None,
        channel: MessageChannel | None = None,
        session_storage: KeyValueStorage | None = None,
        *,
        timeout: float = 300.0,
        poll_interval: float = 2.0,
        closed_check_interval: float = 1.0,
        blocked_check_delay: float = 0.1,
        message_max_age: float = 30.0,
        popup_features: PopupFeatures | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self.token_store = token_store
        self.host = host
        self.client = client
        self.channel = channel
        self.session_storage = session_storage
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.closed_check_interval = closed_check_interval
        self.blocked_check_delay = blocked_check_delay
        self.message_max_age_ms = message_max_age * 1000
        self.popup_features = popup_features or PopupFeatures()
        self._clock = clock or now_ms

    @classmethod
    def from_settings(
        cls,
        token_store: TokenStore,
        host: WindowHost,
        settings: AuthSettings,
        client: ApiClient | None = None,
        channel: MessageChannel | None = None,
        session_storage: KeyValueStorage | None = None,
    ) -> PopupFlowOrchestrator:
        """Create an orchestrator from the ``[auth]`` settings section."""
        return cls(
            token_store,
            host,
            client=client,
            channel=channel,
            session_storage=session_storage,
            timeout=settings.popup_timeout,
            poll_interval=settings.poll_interval,
            closed_check_interval=settings.closed_check_interval,
            blocked_check_delay=settings.blocked_check_delay,
            message_max_age=settings.message_max_age,
            popup_features=PopupFeatures(
                width=settings.popup_width,
                height=settings.popup_height,
            ),
        )

    # ── Public API ──────────────────────────────────────────────────

    async def run(
        self, request: AuthorizationRequest, window_name: str = "oauth_login"
    ) -> AuthResult:
        """Open the popup for ``request`` and wait for the single result.

        Parameters
        ----------
        request : AuthorizationRequest
            URL (and optional poll id) obtained from the identity service.
        window_name : str
            Name given to the popup window.

        Returns
        -------
        AuthResult
            Exactly one result; never raises for flow failures.
        """
        attempt = self._new_attempt()
        logger.debug("Attempt %s: opening %s popup", attempt.attempt_id, request.provider)

        try:
            try:
                attempt.correlation_token = self._setup_state()
            except StateSetupError as exc:
                logger.error("Attempt %s: %s", attempt.attempt_id, exc)
                self._resolve(
                    attempt,
                    AuthResult.failure(
                        AuthErrorKind.STATE_SETUP_FAILED,
                        "Unable to set up secure authentication",
                    ),
                )
                return await attempt.future

            try:
                popup = self._open_popup(request, window_name)
            except PopupBlockedError as exc:
                logger.info("Attempt %s: %s", attempt.attempt_id, exc)
                self._fallback_to_redirect(attempt, request)
                return await attempt.future

            attempt.popup = popup
            self._arm_or_fail(attempt, request)
            return await attempt.future
        finally:
            await self._finish(attempt)

    def recover_redirect_state(self) -> RedirectState | None:
        """Read and clear the state left behind by a redirect fallback.

        Returns
        -------
        RedirectState or None
            None when no redirect is pending or storage is unavailable.
        """
        if self.session_storage is None:
            return None
        try:
            redirect = RedirectState(
                return_url=self.session_storage.pop_item(RETURN_URL_KEY),
                poll_id=self.session_storage.pop_item(POLL_ID_KEY),
                state=self.session_storage.pop_item(REDIRECT_STATE_KEY),
                provider=self.session_storage.pop_item(PROVIDER_KEY),
            )
        except StorageError as exc:
            logger.warning("Could not read redirect state: %s", exc)
            return None

        if redirect.return_url is None and redirect.poll_id is None:
            return None
        return redirect

    async def resume(self, redirect: RedirectState) -> AuthResult:
        """Wait for completion of a flow that continued via full-page redirect.

        Polls with the recovered poll id and listens for messages, without a
        popup to watch.
        """
        can_poll = bool(redirect.poll_id) and self.client is not None
        if not can_poll and self.channel is None:
            return AuthResult.failure(
                AuthErrorKind.VALIDATION_ERROR,
                "No poll id or message channel to resume the login with",
            )

        attempt = self._new_attempt()
        attempt.correlation_token = redirect.state
        request = AuthorizationRequest(
            provider=redirect.provider or "",
            authorization_url=redirect.return_url or "",
            poll_id=redirect.poll_id,
        )
        logger.debug("Attempt %s: resuming after redirect", attempt.attempt_id)
        try:
            self._arm_or_fail(attempt, request)
            return await attempt.future
        finally:
            await self._finish(attempt)

    # ── Setup ───────────────────────────────────────────────────────

    def _new_attempt(self) -> OrchestrationAttempt:
        loop = asyncio.get_running_loop()
        return OrchestrationAttempt(
            attempt_id=secrets.token_hex(4),
            future=loop.create_future(),
        )

    def _setup_state(self) -> str:
        """Generate the correlation token and store it for the popup's lifetime."""
        try:
            state = secrets.token_urlsafe(32)
        except Exception as exc:
            msg = f"Could not generate correlation token: {exc}"
            raise StateSetupError(msg) from exc

        if self.session_storage is not None:
            try:
                self.session_storage.set_item(STATE_KEY, state)
            except StorageError as exc:
                msg = f"Could not store correlation token: {exc}"
                raise StateSetupError(msg) from exc
        return state

    def _open_popup(self, request: AuthorizationRequest, window_name: str) -> PopupHandle:
        """Ask the host for a popup, raising ``PopupBlockedError`` if refused."""
        try:
            popup = self.host.open_popup(request.authorization_url, window_name, self.popup_features)
        except Exception as exc:
            msg = f"Popup failed to open: {exc}"
            raise PopupBlockedError(msg, provider=request.provider) from exc
        if popup is None or popup.closed:
            msg = "Popup was blocked by the host"
            raise PopupBlockedError(msg, provider=request.provider)
        return popup

    def _arm(self, attempt: OrchestrationAttempt, request: AuthorizationRequest) -> None:
        """Start every completion source for an attempt."""
        loop = asyncio.get_running_loop()
        attempt.state = AttemptState.AWAITING_RESULT

        if self.channel is not None:

            def on_message(payload: Any) -> None:
                # Channels may deliver from other threads
                try:
                    loop.call_soon_threadsafe(self._handle_message, attempt, payload)
                except RuntimeError:
                    logger.debug("Attempt %s: message after loop shutdown", attempt.attempt_id)

            attempt.unsubscribe = self.channel.subscribe(on_message)

        if request.poll_id and self.client is not None:
            attempt.tasks.append(loop.create_task(self._poll(attempt, request.poll_id)))

        if attempt.popup is not None:
            attempt.tasks.append(loop.create_task(self._watch_popup(attempt, request)))

        if self.channel is None and not attempt.tasks:
            logger.warning(
                "Attempt %s: no message channel or poll id, only the timeout can end it",
                attempt.attempt_id,
            )

        attempt.timer_handles.append(loop.call_later(self.timeout, self._on_timeout, attempt))

    def _arm_or_fail(self, attempt: OrchestrationAttempt, request: AuthorizationRequest) -> None:
        """Arm the attempt, resolving it as failed if a host adapter raises."""
        try:
            self._arm(attempt, request)
        except Exception as exc:  # noqa: BLE001
            logger.error("Attempt %s: could not start completion sources: %s", attempt.attempt_id, exc)
            self._resolve(
                attempt,
                AuthResult.failure(
                    AuthErrorKind.UNKNOWN_ERROR,
                    "The login window could not be monitored",
                ),
            )

    def _fallback_to_redirect(
        self, attempt: OrchestrationAttempt, request: AuthorizationRequest
    ) -> None:
        """Persist return state and replace the page with the authorization URL."""
        logger.info("Attempt %s: popup blocked, falling back to full page redirect", attempt.attempt_id)

        if self.session_storage is not None:
            try:
                return_url = self.host.current_url
            except Exception as exc:  # noqa: BLE001
                logger.warning("Attempt %s: current page location unavailable: %s", attempt.attempt_id, exc)
                return_url = None
            entries = {
                RETURN_URL_KEY: return_url,
                POLL_ID_KEY: request.poll_id,
                REDIRECT_STATE_KEY: attempt.correlation_token,
                PROVIDER_KEY: request.provider,
            }
            for key, value in entries.items():
                if value is None:
                    continue
                try:
                    self.session_storage.set_item(key, value)
                except StorageError as exc:
                    logger.warning("Could not store %s: %s", key, exc)

        try:
            self.host.navigate(request.authorization_url)
        except Exception as exc:  # noqa: BLE001
            logger.error("Attempt %s: redirect failed: %s", attempt.attempt_id, exc)
            self._resolve(
                attempt,
                AuthResult.failure(
                    AuthErrorKind.POPUP_BLOCKED,
                    "The login window was blocked and the page could not be redirected",
                ),
            )
            return

        self._resolve(
            attempt,
            AuthResult.failure(
                AuthErrorKind.POPUP_BLOCKED,
                "The login window was blocked; continuing with a full page redirect",
            ),
        )

    # ── Completion sources ──────────────────────────────────────────

    def _handle_message(self, attempt: OrchestrationAttempt, payload: Any) -> None:
        """Validate a cross-window message and resolve from it."""
        if attempt.resolved:
            return

        envelope = MessageEnvelope.parse(payload)
        if envelope is None:
            logger.debug("Attempt %s: ignoring non-auth message", attempt.attempt_id)
            return

        age = self._clock() - envelope.timestamp
        if age > self.message_max_age_ms:
            logger.warning("Attempt %s: auth message too old (%.0f ms), ignoring", attempt.attempt_id, age)
            return

        logger.debug("Attempt %s: received auth message (success=%s)", attempt.attempt_id, envelope.success)
        self._resolve(
            attempt,
            AuthResult.from_payload(
                envelope.success,
                envelope.data,
                error=envelope.error,
                message=envelope.message,
            ),
        )

    async def _poll(self, attempt: OrchestrationAttempt, poll_id: str) -> None:
        """Poll the completion status until resolved."""
        assert self.client is not None  # noqa: S101
        path = POLL_PATH.format(poll_id=quote(poll_id, safe=""))

        while not attempt.resolved:
            await asyncio.sleep(self.poll_interval)
            if attempt.resolved:
                return

            try:
                response = await self.client.get(path)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Attempt %s: poll failed, retrying next tick: %s", attempt.attempt_id, exc)
                continue

            if attempt.resolved:
                return

            result = _interpret_poll(response)
            if result is not None:
                self._resolve(attempt, result)
                return

    async def _watch_popup(self, attempt: OrchestrationAttempt, request: AuthorizationRequest) -> None:
        """Detect a blocked popup shortly after opening, then manual closure."""
        popup = attempt.popup
        assert popup is not None  # noqa: S101

        await asyncio.sleep(self.blocked_check_delay)
        if attempt.resolved:
            return
        if popup.closed:
            self._fallback_to_redirect(attempt, request)
            return

        while not attempt.resolved:
            await asyncio.sleep(self.closed_check_interval)
            if attempt.resolved:
                return
            if popup.closed:
                logger.info("Attempt %s: user closed popup manually", attempt.attempt_id)
                self._resolve(
                    attempt,
                    AuthResult.failure(
                        AuthErrorKind.POPUP_CLOSED,
                        "Login window was closed before completing authentication.",
                    ),
                )
                return

    def _on_timeout(self, attempt: OrchestrationAttempt) -> None:
        logger.warning("Attempt %s: timed out after %ss", attempt.attempt_id, self.timeout)
        self._resolve(
            attempt,
            AuthResult.failure(
                AuthErrorKind.TIMEOUT,
                "Authentication timed out. Please try again.",
            ),
        )

    # ── Resolution ──────────────────────────────────────────────────

    def _resolve(self, attempt: OrchestrationAttempt, result: AuthResult) -> bool:
        """Produce the attempt's result; only the first call has any effect."""
        if attempt.resolved:
            return False
        attempt.state = AttemptState.RESOLVED
        self._teardown(attempt)

        if result.success and result.session_token:
            self.token_store.set_token(result.session_token)

        logger.info(
            "Attempt %s resolved: success=%s error=%s",
            attempt.attempt_id,
            result.success,
            result.error_kind,
        )
        if not attempt.future.done():
            attempt.future.set_result(result)
        return True

    def _teardown(self, attempt: OrchestrationAttempt) -> None:
        """Release everything the attempt holds. Runs once."""
        if attempt.torn_down:
            return
        attempt.torn_down = True

        for handle in attempt.timer_handles:
            handle.cancel()
        attempt.timer_handles.clear()

        current = asyncio.current_task()
        for task in attempt.tasks:
            if task is not current and not task.done():
                task.cancel()

        if attempt.unsubscribe is not None:
            attempt.unsubscribe()
            attempt.unsubscribe = None

        if attempt.popup is not None and not attempt.popup.closed:
            try:
                attempt.popup.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Could not close popup: %s", exc)

        if self.session_storage is not None and attempt.correlation_token is not None:
            try:
                if self.session_storage.get_item(STATE_KEY) == attempt.correlation_token:
                    self.session_storage.remove_item(STATE_KEY)
            except StorageError as exc:
                logger.warning("Could not clear correlation token: %s", exc)

    async def _finish(self, attempt: OrchestrationAttempt) -> None:
        """Tear down on any exit from ``run``/``resume`` and wait for cancelled tasks."""
        if not attempt.resolved:
            attempt.state = AttemptState.RESOLVED
        self._teardown(attempt)
        current = asyncio.current_task()
        pending = [task for task in attempt.tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def _interpret_poll(response: ApiResponse) -> AuthResult | None:
    """Map one poll response to a result, or None to keep polling."""
    if not response.success:
        logger.debug("Poll request unsuccessful (%s), retrying next tick", response.error)
        return None

    body = response.data if isinstance(response.data, dict) else {}
    status = body.get("status")

    if status == "pending":
        return None

    payload = body["data"] if isinstance(body.get("data"), dict) else body
    error = payload.get("error") or body.get("error")
    message = payload.get("message") or body.get("message")

    if status == "completed":
        success = payload.get("success", body.get("success", False))
        return AuthResult.from_payload(bool(success), payload, error=error, message=message)

    if status == "failed":
        return AuthResult.failure(
            AuthErrorKind.POLLING_FAILED,
            message or "Authentication failed at the identity provider",
        )

    logger.debug("Unknown poll status %r, retrying next tick", status)
    return None
