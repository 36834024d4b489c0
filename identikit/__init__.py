"""identikit - Client-side authentication for the scum.dog identity service.

This package signs users in through third-party identity providers
(itch.io, Google, Newgrounds), keeps the resulting session token with a
bounded lifetime, and attaches it to every request made to the service.
"""

from .api_client import ApiClient
from .auth import (
    AuthorizationUrlAcquirer,
    AuthStateBroadcaster,
    BrowserTab,
    InProcessMessageChannel,
    LoginFacade,
    MessageChannel,
    MessageRelayServer,
    PopupFeatures,
    PopupFlowOrchestrator,
    PopupHandle,
    SessionManager,
    SystemBrowserHost,
    TokenStore,
    WindowHost,
)
from .client import IdentikitClient
from .config import (
    ApiSettings,
    AuthSettings,
    IdentikitSettings,
    LogSettings,
    StorageSettings,
    get_settings,
)
from .exceptions import (
    AuthenticationError,
    IdentikitException,
    PopupBlockedError,
    StateSetupError,
    StorageError,
)
from .log import get_logger, set_level
from .state.types import (
    ApiResponse,
    AuthErrorKind,
    AuthorizationRequest,
    AuthResult,
    MessageEnvelope,
    UserInfo,
    UserSummary,
)


__version__ = "1.0.0"

__all__ = [
    "ApiClient",
    "ApiResponse",
    "ApiSettings",
    "AuthErrorKind",
    "AuthResult",
    "AuthSettings",
    "AuthStateBroadcaster",
    "AuthenticationError",
    "AuthorizationRequest",
    "AuthorizationUrlAcquirer",
    "BrowserTab",
    "IdentikitClient",
    "IdentikitException",
    "IdentikitSettings",
    "InProcessMessageChannel",
    "LogSettings",
    "LoginFacade",
    "MessageChannel",
    "MessageEnvelope",
    "MessageRelayServer",
    "PopupFeatures",
    "PopupBlockedError",
    "PopupFlowOrchestrator",
    "PopupHandle",
    "SessionManager",
    "StateSetupError",
    "StorageError",
    "StorageSettings",
    "SystemBrowserHost",
    "TokenStore",
    "UserInfo",
    "UserSummary",
    "WindowHost",
    "__version__",
    "get_logger",
    "get_settings",
    "set_level",
]
