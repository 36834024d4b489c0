"""Top-level identikit client.

Wires the token store, HTTP client, session manager and login facade
together from one ``IdentikitSettings`` instance.
"""

# pylint: disable=logging-too-many-args,too-many-arguments

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from .api_client import ApiClient
from .auth.acquisition import AuthorizationUrlAcquirer
from .auth.flow import PopupFlowOrchestrator
from .auth.host import SystemBrowserHost
from .auth.login import LoginFacade
from .auth.session import SessionManager
from .auth.token_store import TokenStore
from .config import get_settings
from .state._factory import session_storage_from_settings, storage_from_settings


if TYPE_CHECKING:
    import httpx

    from .auth.broadcaster import AuthStateListener
    from .auth.host import MessageChannel, WindowHost
    from .config import IdentikitSettings
    from .state.base import KeyValueStorage


logger = logging.getLogger("identikit")


class IdentikitClient:
    """Everything a host application needs to sign users in.

    Parameters
    ----------
    token_store : TokenStore
        Owner of the session token.
    api : ApiClient
        Identity service client bound to ``token_store``.
    login : LoginFacade
        Provider login entry points.
    session : SessionManager
        Session verification and logout.
    """

    def __init__(
        self,
        token_store: TokenStore,
        api: ApiClient,
        login: LoginFacade,
        session: SessionManager,
    ) -> None:
        """Initialize the client from already wired parts."""
        self.token_store = token_store
        self.api = api
        self.login = login
        self.session = session

    @property
    def orchestrator(self) -> PopupFlowOrchestrator:
        """The popup orchestrator used by ``login``."""
        return self.login.orchestrator

    @classmethod
    def from_settings(
        cls,
        settings: IdentikitSettings | None = None,
        *,
        host: WindowHost | None = None,
        channel: MessageChannel | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        storage: KeyValueStorage | None = None,
        session_storage: KeyValueStorage | None = None,
        runtime_hook: AuthStateListener | None = None,
    ) -> IdentikitClient:
        """Build a fully wired client.

        Parameters
        ----------
        settings : IdentikitSettings, optional
            Defaults to the cached global settings.
        host : WindowHost, optional
            Defaults to the system browser.
        channel : MessageChannel, optional
            Cross-window message source for popup results.
        transport : httpx.AsyncBaseTransport, optional
            Custom HTTP transport.
        storage : KeyValueStorage, optional
            Durable token storage; defaults to the configured backend.
        session_storage : KeyValueStorage, optional
            Redirect-recovery storage; defaults to the configured backend.
        runtime_hook : callable, optional
            Host-level auth state hook.

        Returns
        -------
        IdentikitClient
            The wired client.
        """
        settings = settings or get_settings()

        if storage is None:
            storage = storage_from_settings(settings.storage)
        if session_storage is None:
            session_storage = session_storage_from_settings(settings.storage)

        token_store = TokenStore(
            storage,
            max_age_ms=settings.auth.token_max_age_ms,
            runtime_hook=runtime_hook,
        )
        api = ApiClient.from_settings(token_store, settings.api, transport=transport)
        orchestrator = PopupFlowOrchestrator.from_settings(
            token_store,
            host or SystemBrowserHost(),
            settings.auth,
            client=api,
            channel=channel,
            session_storage=session_storage,
        )
        login = LoginFacade(
            api,
            token_store,
            AuthorizationUrlAcquirer.from_settings(api, settings.auth),
            orchestrator,
            polling_providers=settings.auth.polling_providers,
        )
        logger.debug("identikit client ready for %s", settings.api.base_url)
        return cls(token_store, api, login, SessionManager(api, token_store))

    def configure(self, base_url: str | None = None, timeout: float | None = None) -> None:
        """Point the client at another service URL or change its timeout."""
        self.api.configure(base_url=base_url, timeout=timeout)

    def is_logged_in(self) -> bool:
        """Whether a session token is held locally."""
        return self.token_store.is_authenticated()

    async def aclose(self) -> None:
        """Release the HTTP connection pool."""
        await self.api.aclose()

    async def __aenter__(self) -> IdentikitClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
