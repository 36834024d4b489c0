"""identikit exception hierarchy.

All identikit-specific exceptions inherit from IdentikitException, enabling
catch-all handling while supporting specific error types. Public operations
convert these into structured results; they are raised only between
internal layers.
"""

from __future__ import annotations

from typing import Any


class IdentikitException(Exception):
    """Base exception for all identikit errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize identikit exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (key, backend, provider, attempt_id, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class StorageError(IdentikitException):
    """Key-value storage operation failed.

    Raised by storage backends when the underlying medium is unavailable,
    unreadable, or rejects a write.
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        backend: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize storage error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        key : str, optional
            The storage key involved.
        backend : str, optional
            The storage backend name (e.g., "file", "keyring").
        **context : Any
            Additional context.
        """
        super().__init__(message, key=key, backend=backend, **context)
        self.key = key
        self.backend = backend


class AuthenticationError(IdentikitException):
    """Base exception for authentication failures.

    Raised inside the authentication flow and converted into a failed
    ``AuthResult`` before reaching the caller.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        attempt_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The identity provider name (e.g., "google", "itchio").
        attempt_id : str, optional
            The identifier of the orchestration attempt.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, attempt_id=attempt_id, **context)
        self.provider = provider
        self.attempt_id = attempt_id


class StateSetupError(AuthenticationError):
    """The anti-forgery correlation value could not be generated or stored."""


class PopupBlockedError(AuthenticationError):
    """The host refused to open the authentication popup."""
