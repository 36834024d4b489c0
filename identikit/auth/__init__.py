"""Authentication system for identikit.

Provides the session token store and its change broadcaster, authorization
URL acquisition with retry, the popup/poll login orchestrator with its host
adapters, and the per-provider login facade.
"""

from __future__ import annotations

from .acquisition import AuthorizationUrlAcquirer
from .broadcaster import AuthStateBroadcaster
from .flow import PopupFlowOrchestrator
from .host import (
    BrowserTab,
    InProcessMessageChannel,
    MessageChannel,
    PopupFeatures,
    PopupHandle,
    SystemBrowserHost,
    WindowHost,
)
from .login import LoginFacade
from .relay_server import MessageRelayServer
from .session import SessionManager
from .token_store import TokenStore


__all__ = [
    "AuthStateBroadcaster",
    "AuthorizationUrlAcquirer",
    "BrowserTab",
    "InProcessMessageChannel",
    "LoginFacade",
    "MessageChannel",
    "MessageRelayServer",
    "PopupFeatures",
    "PopupFlowOrchestrator",
    "PopupHandle",
    "SessionManager",
    "SystemBrowserHost",
    "TokenStore",
    "WindowHost",
]
