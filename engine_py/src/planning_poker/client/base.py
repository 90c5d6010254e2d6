"""
Base transport interface for the session client.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class BaseTransport(ABC):
    """Abstract message channel between a SessionClient and the server."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether messages can be sent right now."""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """
        Send one command to the server.

        Raises:
            ConnectionError: If the transport is not connected
        """

    @abstractmethod
    async def reconnect(self) -> None:
        """Ask the transport to (re)establish its connection as soon as possible."""

    async def close(self) -> None:
        """Stop the transport for good."""
