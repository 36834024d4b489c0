"""identikit storage and state types.

Provides pluggable key-value storage backends for the session token and
the redirect recovery entries, plus the shared authentication types.

Usage
-----
    from identikit.state import create_storage
    storage = create_storage("file", path="~/.config/identikit/storage.json")
"""

from __future__ import annotations

from ._factory import create_storage, session_storage_from_settings, storage_from_settings
from .base import KeyValueStorage
from .file import FileStorage
from .keyring_store import KeyringStorage
from .memory import MemoryStorage
from .types import (
    ApiResponse,
    AttemptState,
    AuthErrorKind,
    AuthorizationRequest,
    AuthResult,
    MessageEnvelope,
    OrchestrationAttempt,
    RedirectState,
    SessionToken,
    UserInfo,
    UserSummary,
)


__all__ = [
    "ApiResponse",
    "AttemptState",
    "AuthErrorKind",
    "AuthResult",
    "AuthorizationRequest",
    "FileStorage",
    "KeyValueStorage",
    "KeyringStorage",
    "MemoryStorage",
    "MessageEnvelope",
    "OrchestrationAttempt",
    "RedirectState",
    "SessionToken",
    "UserInfo",
    "UserSummary",
    "create_storage",
    "session_storage_from_settings",
    "storage_from_settings",
]
