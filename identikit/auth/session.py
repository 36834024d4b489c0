"""Server-side session operations.

Verifies the current token against the identity service, fetches the
signed-in user, and logs out. Local token state follows the server's
verdict: an invalid session clears the token, and logout always does.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..state.types import ApiResponse, UserInfo


if TYPE_CHECKING:
    from ..api_client import ApiClient
    from .token_store import TokenStore


logger = logging.getLogger("identikit.auth")

SESSION_PATH = "/auth/session"
ME_PATH = "/auth/me"


class SessionManager:
    """Session lifecycle against the identity service.

    Parameters
    ----------
    client : ApiClient
        The identity service client.
    token_store : TokenStore
        The store holding the session token.
    """

    def __init__(self, client: ApiClient, token_store: TokenStore) -> None:
        """Initialize the session manager."""
        self.client = client
        self.token_store = token_store

    def is_logged_in(self) -> bool:
        """Whether a local token is held; does not contact the server."""
        return self.token_store.is_authenticated()

    async def verify_session(self) -> ApiResponse:
        """Check that the current token is still valid.

        Clears the local token when the request fails or the service reports
        the session as invalid.
        """
        response = await self.client.get(SESSION_PATH)

        data = response.data
        reported_invalid = bool(data) and not (isinstance(data, dict) and data.get("valid"))
        if not response.success or reported_invalid:
            logger.info("Session is no longer valid, clearing token")
            self.token_store.clear_token()
        return response

    async def get_current_user(self) -> ApiResponse:
        """Fetch the signed-in user and whether they already have a character.

        On success ``data`` is a ``UserInfo``.
        """
        response = await self.client.get(ME_PATH)
        if response.success:
            response.data = UserInfo.from_dict(response.data)
        return response

    async def logout(self) -> ApiResponse:
        """Invalidate the server-side session and clear the local token."""
        response = await self.client.delete(SESSION_PATH)
        if not response.success:
            logger.warning("Server logout failed (%s), clearing local token anyway", response.error)
        self.token_store.clear_token()
        logger.info("Logged out")
        return response
