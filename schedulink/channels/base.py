"""Base abstractions for messaging transport adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum


class DeliveryFailure(Exception):
    """Raised when a transport cannot deliver a message."""


class Presence(str, Enum):
    COMPOSING = "composing"
    PAUSED = "paused"


class Transport(ABC):
    """Abstract base class encapsulating channel-specific delivery."""

    #: Lowercase channel identifier used in logs and configuration.
    channel_name: str

    @abstractmethod
    async def send_text(self, address: str, text: str) -> None:
        """Deliver ``text`` to the canonical ``address``.

        Raises:
            DeliveryFailure: If the channel rejects or cannot send the message.
        """

    async def send_presence(self, address: str, presence: Presence) -> None:
        """Show or hide a typing indicator.

        Adapters can override this when the channel supports presence. The
        default implementation does nothing.
        """

        return None
