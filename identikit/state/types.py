"""Type definitions for identikit authentication state.

Shared types used by the token store, the HTTP client, and the login
orchestration.
"""

from __future__ import annotations

import asyncio
import time

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..auth.host import PopupHandle


class AuthErrorKind(str, Enum):
    """Distinguishable failure conditions a caller can branch on."""

    VALIDATION_ERROR = "validation_error"
    AUTHENTICATION_REQUIRED = "authentication_required"
    NETWORK_ERROR = "network_error"
    REQUEST_TIMEOUT = "request_timeout"
    POPUP_BLOCKED = "popup_blocked"
    POPUP_CLOSED = "popup_closed"
    TIMEOUT = "timeout"
    POLLING_FAILED = "polling_failed"
    STATE_SETUP_FAILED = "state_setup_failed"
    UNKNOWN_ERROR = "unknown_error"


# Failures that originate below the application protocol
TRANSPORT_ERROR_KINDS = frozenset(
    {AuthErrorKind.NETWORK_ERROR.value, AuthErrorKind.REQUEST_TIMEOUT.value}
)


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


@dataclass
class UserSummary:
    """Identity of an authenticated user.

    Attributes
    ----------
    id : str
        Service-side user identifier.
    username : str
        Display name.
    platform : str
        Identity provider the account belongs to.
    is_admin : bool
        Whether the user holds admin rights on the service.
    """

    id: str = ""
    username: str = ""
    platform: str = ""
    is_admin: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> UserSummary:
        """Build a summary from a service payload, tolerating missing keys."""
        if not isinstance(data, dict):
            return cls()
        return cls(
            id=str(data.get("id") or ""),
            username=str(data.get("username") or ""),
            platform=str(data.get("platform") or ""),
            is_admin=bool(data.get("isAdmin", data.get("is_admin", False))),
        )


@dataclass
class SessionToken:
    """A persisted session credential.

    Attributes
    ----------
    value : str
        The opaque bearer token.
    persisted_at : float
        Epoch milliseconds when the token was written.
    """

    value: str
    persisted_at: float = field(default_factory=now_ms)

    def age_ms(self, now: float | None = None) -> float:
        """Milliseconds elapsed since the token was persisted."""
        return (now_ms() if now is None else now) - self.persisted_at

    def is_expired(self, max_age_ms: float, now: float | None = None) -> bool:
        """Check whether the token is older than ``max_age_ms``."""
        return self.age_ms(now) > max_age_ms


@dataclass
class AuthResult:
    """Outcome of one authentication attempt.

    Attributes
    ----------
    success : bool
        Whether authentication completed successfully.
    error_kind : str or None
        An ``AuthErrorKind`` value, or the error string reported by the service.
    message : str
        Human-readable description of the outcome.
    user : UserSummary
        The authenticated user (empty on failure).
    session_token : str or None
        The session token; always present when ``success`` is true.
    token_type : str
        Token type, always "Bearer".
    """

    success: bool
    error_kind: str | None = None
    message: str = ""
    user: UserSummary = field(default_factory=UserSummary)
    session_token: str | None = None
    token_type: str = "Bearer"  # noqa: S105

    def __post_init__(self) -> None:
        if self.success and not self.session_token:
            msg = "A successful AuthResult requires a session token"
            raise ValueError(msg)
        if isinstance(self.error_kind, AuthErrorKind):
            self.error_kind = self.error_kind.value

    @classmethod
    def failure(cls, error_kind: AuthErrorKind | str | None, message: str) -> AuthResult:
        """Create a failed result."""
        return cls(
            success=False,
            error_kind=error_kind or AuthErrorKind.UNKNOWN_ERROR,
            message=message,
        )

    @classmethod
    def from_payload(
        cls,
        success: bool,
        data: Any,
        error: str | None = None,
        message: str | None = None,
    ) -> AuthResult:
        """Build a result from a completion payload.

        ``data`` carries ``sessionId`` and ``user``; a success without a
        session id is reported as ``unknown_error``.
        """
        data = data if isinstance(data, dict) else {}
        token = data.get("sessionId") or data.get("session_id")
        text = message or data.get("message") or ""
        if success and token:
            return cls(
                success=True,
                message=text,
                user=UserSummary.from_dict(data.get("user")),
                session_token=str(token),
            )
        if success:
            return cls.failure(
                AuthErrorKind.UNKNOWN_ERROR,
                "Authentication reported success without a session token",
            )
        return cls.failure(error, text or "Authentication failed")


@dataclass
class ApiResponse:
    """Structured outcome of one HTTP request to the identity service.

    Attributes
    ----------
    success : bool
        Whether the request returned a 2xx status.
    data : Any
        Decoded JSON body, or text for non-JSON responses.
    error : str or None
        Error kind or service error code on failure.
    message : str or None
        Human-readable message from the service or the client.
    status_code : int or None
        HTTP status, ``None`` when no response was received.
    """

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None
    status_code: int | None = None


@dataclass
class UserInfo:
    """Current user plus character-existence summary (``/auth/me``)."""

    user: UserSummary
    has_character: bool = False
    character: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> UserInfo:
        """Build from the ``/auth/me`` payload."""
        data = data if isinstance(data, dict) else {}
        character = data.get("character")
        return cls(
            user=UserSummary.from_dict(data.get("user")),
            has_character=bool(data.get("hasCharacter", character is not None)),
            character=character if isinstance(character, dict) else None,
        )


def _parse_expiry(value: Any) -> datetime | None:
    """Parse an ISO-8601 expiry timestamp, returning None when absent or invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class AuthorizationRequest:
    """A provider authorization URL obtained for one login attempt.

    Attributes
    ----------
    provider : str
        The provider the URL belongs to.
    authorization_url : str
        Where the popup (or redirected page) should navigate.
    poll_id : str or None
        Correlation id for poll-based completion.
    state : str or None
        Provider state parameter echoed by the service.
    expires_at : datetime or None
        When the URL stops being valid.
    """

    provider: str
    authorization_url: str
    poll_id: str | None = None
    state: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_payload(
        cls, provider: str, data: Any, poll_id: str | None = None
    ) -> AuthorizationRequest | None:
        """Build from an ``authorization-url`` response; None if no URL is present."""
        if not isinstance(data, dict):
            return None
        url = data.get("authUrl") or data.get("authorization_url") or data.get("url")
        if not url:
            return None
        return cls(
            provider=provider,
            authorization_url=str(url),
            poll_id=poll_id or data.get("pollId") or data.get("poll_id"),
            state=data.get("state"),
            expires_at=_parse_expiry(data.get("expiresAt") or data.get("expires_at")),
        )


@dataclass
class MessageEnvelope:
    """Completion message delivered over the cross-window channel.

    Attributes
    ----------
    success : bool
        Whether the popup-side flow succeeded.
    timestamp : float
        Epoch milliseconds when the sender created the message.
    error : str or None
        Error kind on failure.
    message : str or None
        Human-readable message.
    data : dict or None
        Auth payload (``sessionId``, ``user``).
    """

    success: bool
    timestamp: float
    error: str | None = None
    message: str | None = None
    data: dict[str, Any] | None = None

    @classmethod
    def parse(cls, payload: Any) -> MessageEnvelope | None:
        """Validate a raw payload, returning None if it is not an envelope."""
        if not isinstance(payload, dict):
            return None
        success = payload.get("success")
        timestamp = payload.get("timestamp")
        if not isinstance(success, bool):
            return None
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return None
        if timestamp <= 0:
            return None
        data = payload.get("data")
        if data is not None and not isinstance(data, dict):
            return None
        error = payload.get("error")
        message = payload.get("message")
        return cls(
            success=success,
            timestamp=float(timestamp),
            error=str(error) if error is not None else None,
            message=str(message) if message is not None else None,
            data=data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for posting to a channel."""
        payload: dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.error is not None:
            payload["error"] = self.error
        if self.message is not None:
            payload["message"] = self.message
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass
class RedirectState:
    """State persisted before a full-page redirect fallback.

    Attributes
    ----------
    return_url : str or None
        The page location to come back to.
    poll_id : str or None
        Poll id for completing the flow after the round trip.
    state : str or None
        The correlation token generated for the attempt.
    provider : str or None
        Provider the redirect was started for.
    """

    return_url: str | None = None
    poll_id: str | None = None
    state: str | None = None
    provider: str | None = None


class AttemptState(str, Enum):
    """State of one popup orchestration attempt."""

    OPENING = "opening"
    AWAITING_RESULT = "awaiting_result"
    RESOLVED = "resolved"


@dataclass
class OrchestrationAttempt:
    """Bookkeeping for one in-flight popup session.

    Owned by a single orchestrator run and torn down exactly once.
    """

    attempt_id: str
    future: asyncio.Future[AuthResult]
    state: AttemptState = AttemptState.OPENING
    popup: PopupHandle | None = None
    correlation_token: str | None = None
    timer_handles: list[asyncio.TimerHandle] = field(default_factory=list)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)
    unsubscribe: Callable[[], None] | None = None
    torn_down: bool = False

    @property
    def resolved(self) -> bool:
        """Whether a result has already been produced."""
        return self.state is AttemptState.RESOLVED
