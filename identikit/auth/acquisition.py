"""Authorization URL acquisition with retry and backoff.

Asks the identity service for a provider authorization URL, first
obtaining a poll id when the provider completes through polling.
Application-level failures are retried after a linearly growing delay;
transport failures back off exponentially. The outcome is always a
structured value, never an exception.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING

from ..state.types import (
    TRANSPORT_ERROR_KINDS,
    ApiResponse,
    AuthErrorKind,
    AuthorizationRequest,
    AuthResult,
)


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..api_client import ApiClient
    from ..config import AuthSettings


logger = logging.getLogger("identikit.auth")

AUTHORIZATION_URL_PATHS: dict[str, str] = {
    "itchio": "/auth/itchio/authorization-url",
    "google": "/auth/google/authorization-url",
}
POLL_ID_PATH = "/auth/oauth/poll-id"

PROVIDER_NAMES: dict[str, str] = {"itchio": "Itch.io", "google": "Google"}

# Failures that retrying cannot fix
_NON_RETRYABLE = frozenset(
    {AuthErrorKind.VALIDATION_ERROR.value, AuthErrorKind.AUTHENTICATION_REQUIRED.value}
)


def linear_delay(base: float, attempt: int) -> float:
    """Delay before retrying an application-level failure."""
    return base * attempt


def exponential_delay(base: float, attempt: int, max_delay: float) -> float:
    """Delay before retrying a transport failure."""
    return min(base * (2 ** (attempt - 1)), max_delay)


class AuthorizationUrlAcquirer:
    """Obtains ``AuthorizationRequest`` objects from the identity service.

    Parameters
    ----------
    client : ApiClient
        The identity service client.
    max_attempts : int
        Total attempts before giving up (default 3).
    retry_delay : float
        Base delay in seconds.
    max_retry_delay : float
        Upper bound for exponential backoff.
    sleep : callable, optional
        Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        client: ApiClient,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the acquirer."""
        self.client = client
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls, client: ApiClient, settings: AuthSettings) -> AuthorizationUrlAcquirer:
        """Create an acquirer from the ``[auth]`` settings section."""
        return cls(
            client,
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
            max_retry_delay=settings.max_retry_delay,
        )

    async def acquire(
        self, provider: str, use_polling: bool = False
    ) -> AuthorizationRequest | AuthResult:
        """Request an authorization URL, retrying transient failures.

        Parameters
        ----------
        provider : str
            Provider identifier ("itchio" or "google").
        use_polling : bool
            Whether to obtain a poll id first.

        Returns
        -------
        AuthorizationRequest or AuthResult
            The request on success, a failed ``AuthResult`` otherwise.
        """
        path = AUTHORIZATION_URL_PATHS.get(provider)
        if path is None:
            return AuthResult.failure(
                AuthErrorKind.VALIDATION_ERROR, f"Unsupported identity provider: {provider}"
            )

        display = PROVIDER_NAMES.get(provider, provider)
        poll_id: str | None = None
        last_response = ApiResponse(success=False, error=AuthErrorKind.UNKNOWN_ERROR.value)

        for attempt in range(1, self.max_attempts + 1):
            try:
                if use_polling and poll_id is None:
                    poll_response = await self.client.get(POLL_ID_PATH)
                    poll_id = _extract_poll_id(poll_response)
                    if poll_id is None:
                        last_response = _as_failure(poll_response, "Failed to get poll id")
                        if not await self._should_retry(last_response, attempt, display):
                            break
                        continue

                params = {"poll_id": poll_id} if poll_id else None
                response = await self.client.get(path, params=params)
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s OAuth attempt %d failed: %s", display, attempt, exc)
                last_response = ApiResponse(
                    success=False, error=AuthErrorKind.NETWORK_ERROR.value, message=str(exc)
                )
                if not await self._should_retry(last_response, attempt, display):
                    break
                continue

            if response.success:
                request = AuthorizationRequest.from_payload(provider, response.data, poll_id)
                if request is not None:
                    logger.debug("Obtained %s authorization URL on attempt %d", display, attempt)
                    return request
                response = _as_failure(response, "Authorization URL missing from response")

            last_response = response
            if not await self._should_retry(last_response, attempt, display):
                break

        return _exhausted(last_response, display)

    async def _should_retry(self, response: ApiResponse, attempt: int, display: str) -> bool:
        """Sleep before the next attempt, or return False when retrying is pointless."""
        if response.error in _NON_RETRYABLE or attempt >= self.max_attempts:
            return False

        if response.error in TRANSPORT_ERROR_KINDS:
            delay = exponential_delay(self.retry_delay, attempt, self.max_retry_delay)
        else:
            delay = linear_delay(self.retry_delay, attempt)

        logger.info(
            "%s OAuth URL request failed (attempt %d/%d): %s, retrying in %.1fs",
            display,
            attempt,
            self.max_attempts,
            response.error,
            delay,
        )
        await self._sleep(delay)
        return True


def _extract_poll_id(response: ApiResponse) -> str | None:
    """Read the poll id from a ``poll-id`` response."""
    if not response.success or not isinstance(response.data, dict):
        return None
    poll_id = response.data.get("pollId") or response.data.get("poll_id")
    return str(poll_id) if poll_id else None


def _as_failure(response: ApiResponse, message: str) -> ApiResponse:
    """Turn a response lacking the expected payload into a failure."""
    if not response.success:
        return response
    return ApiResponse(
        success=False,
        data=response.data,
        error=AuthErrorKind.UNKNOWN_ERROR.value,
        message=message,
        status_code=response.status_code,
    )


def _exhausted(response: ApiResponse, display: str) -> AuthResult:
    """Build the failure returned once retries are used up."""
    if response.error in TRANSPORT_ERROR_KINDS:
        return AuthResult.failure(
            response.error,
            f"Failed to connect to {display} after multiple attempts",
        )
    return AuthResult.failure(
        response.error,
        response.message or "Failed to get OAuth URL after multiple attempts",
    )
