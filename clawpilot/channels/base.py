"""Message transport contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from clawpilot.models import InboundMessage


class TransportError(RuntimeError):
    """A transport call failed and the message was not delivered."""


class Transport(ABC):
    """Receives inbound messages and delivers replies for one chat network."""

    @abstractmethod
    def poll_messages(self) -> AsyncIterator[InboundMessage]:
        """Yield inbound messages as they arrive."""

    @abstractmethod
    async def send_text(self, conversation_key: str, text: str, reply_to_id: str | None = None) -> bool:
        """Deliver ``text``; False when delivery failed."""

    @abstractmethod
    async def send_typing(self, conversation_key: str) -> None:
        """Show a typing indicator in the chat."""
