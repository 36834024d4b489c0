"""HTTP client for the identity service.

Wraps ``httpx.AsyncClient`` so every call returns an ``ApiResponse``
instead of raising. Requests carry the current session token as a bearer
credential; a 401 from any endpoint clears the token before the failure
is returned.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING, Any

import httpx

from .state.types import ApiResponse, AuthErrorKind


if TYPE_CHECKING:
    from .auth.token_store import TokenStore
    from .config import ApiSettings


logger = logging.getLogger("identikit.api")


class ApiClient:
    """Async request/response client bound to one token store.

    Parameters
    ----------
    token_store : TokenStore
        Supplies the bearer token and is cleared on 401 responses.
    base_url : str
        Base URL of the identity service.
    timeout : float
        Default per-request timeout in seconds.
    default_headers : dict, optional
        Headers sent with every request.
    transport : httpx.AsyncBaseTransport, optional
        Custom transport (e.g. ``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        token_store: TokenStore,
        base_url: str,
        timeout: float = 10.0,
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the API client."""
        self.token_store = token_store
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_headers = {"Content-Type": "application/json", **(default_headers or {})}
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        token_store: TokenStore,
        settings: ApiSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ApiClient:
        """Create a client from the ``[api]`` settings section."""
        return cls(
            token_store,
            base_url=settings.base_url,
            timeout=settings.timeout,
            default_headers={"User-Agent": settings.user_agent},
            transport=transport,
        )

    def configure(self, base_url: str | None = None, timeout: float | None = None) -> None:
        """Change the base URL or default timeout for subsequent requests."""
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        if timeout is not None:
            self.timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(transport=self._transport)
        return self._http_client

    async def aclose(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        """Send one request and convert the outcome into an ``ApiResponse``.

        Parameters
        ----------
        method : str
            HTTP method.
        endpoint : str
            Path relative to ``base_url`` (e.g. ``/auth/me``).
        body : Any, optional
            JSON body; ignored for GET.
        params : dict, optional
            Query parameters.
        headers : dict, optional
            Extra headers for this request.
        timeout : float, optional
            Overrides the default timeout.

        Returns
        -------
        ApiResponse
            Never raises for transport or HTTP failures.
        """
        url = f"{self.base_url}{endpoint}"
        request_headers = {**self.default_headers, **(headers or {})}

        token = self.token_store.get_token()
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        json_body = body if body is not None and method.upper() != "GET" else None

        try:
            client = await self._get_client()
            response = await client.request(
                method.upper(),
                url,
                json=json_body,
                params=params,
                headers=request_headers,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException:
            logger.warning("%s %s timed out", method.upper(), endpoint)
            return ApiResponse(
                success=False,
                error=AuthErrorKind.REQUEST_TIMEOUT.value,
                message="Request timed out, please try again",
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method.upper(), endpoint, exc)
            return ApiResponse(
                success=False,
                error=AuthErrorKind.NETWORK_ERROR.value,
                message=str(exc) or "Unable to connect to server",
            )

        data = _decode_body(response)

        if not response.is_success:
            error = data.get("error") if isinstance(data, dict) else None
            message = data.get("message") if isinstance(data, dict) else None

            if response.status_code == 401:
                logger.info("%s %s returned 401, clearing session token", method.upper(), endpoint)
                self.token_store.clear_token()
                error = AuthErrorKind.AUTHENTICATION_REQUIRED.value
                message = "Please log in to continue"

            return ApiResponse(
                success=False,
                data=data,
                error=error or f"HTTP {response.status_code}",
                message=message or response.reason_phrase,
                status_code=response.status_code,
            )

        return ApiResponse(
            success=True,
            data=data,
            message=data.get("message") if isinstance(data, dict) else None,
            status_code=response.status_code,
        )

    async def get(self, endpoint: str, **kwargs: Any) -> ApiResponse:
        """Send a GET request."""
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs: Any) -> ApiResponse:
        """Send a POST request."""
        return await self.request("POST", endpoint, body, **kwargs)

    async def delete(self, endpoint: str, body: Any = None, **kwargs: Any) -> ApiResponse:
        """Send a DELETE request."""
        return await self.request("DELETE", endpoint, body, **kwargs)


def _decode_body(response: httpx.Response) -> Any:
    """Decode JSON when the response declares it, text otherwise."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text
