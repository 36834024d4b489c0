"""Per-provider login entry points.

Composes authorization URL acquisition with the popup orchestrator for
third-party providers, and performs the direct session-id exchange for
Newgrounds. Every entry point returns an ``AuthResult``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..state.types import AuthErrorKind, AuthorizationRequest, AuthResult, MessageEnvelope, now_ms
from .acquisition import AUTHORIZATION_URL_PATHS


if TYPE_CHECKING:
    from ..api_client import ApiClient
    from .acquisition import AuthorizationUrlAcquirer
    from .flow import PopupFlowOrchestrator
    from .host import MessageChannel, PopupHandle
    from .token_store import TokenStore


logger = logging.getLogger("identikit.auth")

NEWGROUNDS_PATH = "/auth/newgrounds/authenticate"

WINDOW_NAMES: dict[str, str] = {"itchio": "itch_login", "google": "google_login"}


class LoginFacade:
    """Uniform login API over all supported providers.

    Parameters
    ----------
    client : ApiClient
        The identity service client.
    token_store : TokenStore
        Receives tokens from direct exchanges.
    acquirer : AuthorizationUrlAcquirer
        Obtains authorization URLs with retry.
    orchestrator : PopupFlowOrchestrator
        Runs the popup flow.
    polling_providers : iterable of str, optional
        Providers whose completion is also polled via a poll id.
    """

    def __init__(
        self,
        client: ApiClient,
        token_store: TokenStore,
        acquirer: AuthorizationUrlAcquirer,
        orchestrator: PopupFlowOrchestrator,
        polling_providers: list[str] | tuple[str, ...] | None = None,
    ) -> None:
        """Initialize the login facade."""
        self.client = client
        self.token_store = token_store
        self.acquirer = acquirer
        self.orchestrator = orchestrator
        self.polling_providers = set(polling_providers or ())

    @property
    def providers(self) -> list[str]:
        """Providers reachable through the popup flow."""
        return sorted(AUTHORIZATION_URL_PATHS)

    async def login(self, provider: str) -> AuthResult:
        """Run the complete popup login for ``provider``.

        Parameters
        ----------
        provider : str
            "itchio" or "google".

        Returns
        -------
        AuthResult
            The orchestrator's result, or the acquisition failure.
        """
        if provider not in AUTHORIZATION_URL_PATHS:
            return AuthResult.failure(
                AuthErrorKind.VALIDATION_ERROR, f"Unsupported identity provider: {provider}"
            )

        acquired = await self.acquirer.acquire(
            provider, use_polling=provider in self.polling_providers
        )
        if isinstance(acquired, AuthResult):
            logger.warning("Could not start %s login: %s", provider, acquired.message)
            return acquired

        return await self.run_request(acquired)

    async def run_request(self, request: AuthorizationRequest) -> AuthResult:
        """Run the popup flow for an already acquired request."""
        window_name = WINDOW_NAMES.get(request.provider, "oauth_login")
        return await self.orchestrator.run(request, window_name=window_name)

    async def login_with_itch(self) -> AuthResult:
        """Complete itch.io login, popup included."""
        return await self.login("itchio")

    async def login_with_google(self) -> AuthResult:
        """Complete Google login, popup included."""
        return await self.login("google")

    async def authenticate_newgrounds(
        self,
        session_id: str,
        opener: MessageChannel | None = None,
        popup: PopupHandle | None = None,
    ) -> AuthResult:
        """Exchange a Newgrounds session id for a service token.

        Parameters
        ----------
        session_id : str
            Session id assigned by Newgrounds.io.
        opener : MessageChannel, optional
            When this code runs inside a login popup, the channel back to
            the opening page; the result is posted there.
        popup : PopupHandle, optional
            The popup running this code, closed after relaying.

        Returns
        -------
        AuthResult
            Success carries the new session token, which is also stored.
        """
        if not isinstance(session_id, str) or not session_id.strip():
            return AuthResult.failure(
                AuthErrorKind.VALIDATION_ERROR, "A Newgrounds session id is required"
            )

        response = await self.client.post(NEWGROUNDS_PATH, {"session_id": session_id})

        if response.success:
            result = AuthResult.from_payload(True, response.data, message=response.message)
        else:
            result = AuthResult.failure(
                response.error, response.message or "Newgrounds authentication failed"
            )

        if result.success and result.session_token:
            self.token_store.set_token(result.session_token)

        if opener is not None:
            self._relay_to_opener(result, opener, popup)

        return result

    async def resume_redirect(self) -> AuthResult | None:
        """Finish a login that continued via full-page redirect.

        Call from application startup. Returns None when no redirect was
        pending.
        """
        redirect = self.orchestrator.recover_redirect_state()
        if redirect is None:
            return None
        logger.info("Resuming %s login after redirect", redirect.provider or "OAuth")
        return await self.orchestrator.resume(redirect)

    @staticmethod
    def _relay_to_opener(
        result: AuthResult, opener: MessageChannel, popup: PopupHandle | None
    ) -> None:
        """Post the result envelope to the opening page and close this popup."""
        data = {
            "sessionId": result.session_token or "",
            "user": {
                "id": result.user.id,
                "username": result.user.username,
                "platform": result.user.platform,
                "isAdmin": result.user.is_admin,
            },
            "tokenType": result.token_type,
            "message": result.message,
        }
        envelope = MessageEnvelope(
            success=result.success,
            timestamp=now_ms(),
            error=result.error_kind,
            message=result.message,
            data=data,
        )
        try:
            opener.post(envelope.to_dict())
            if popup is not None:
                popup.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not post message to opener window: %s", exc)
