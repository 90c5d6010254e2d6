"""
Client synchronization layer for planning poker sessions.
"""

from .base import BaseTransport
from .identity import LocalIdentityStore, StoredIdentity
from .sync import ConnectionStatus, SessionClient, SERVER_TIMEOUT_MESSAGE
from .transport import WebSocketTransport

__all__ = [
    "BaseTransport",
    "ConnectionStatus",
    "LocalIdentityStore",
    "SERVER_TIMEOUT_MESSAGE",
    "SessionClient",
    "StoredIdentity",
    "WebSocketTransport",
]
