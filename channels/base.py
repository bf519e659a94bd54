"""Base channel interface for chat surfaces."""

from abc import ABC, abstractmethod
from typing import Any

from core.bus import MessageBus
from core.events import InboundMessage, OutboundMessage


class BaseChannel(ABC):
    """
    Abstract base class for channels that feed commands into the bus.
    """

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """Start the channel."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel."""
        pass

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """Deliver a reply through this channel."""
        pass

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> InboundMessage:
        """Wrap incoming text as an InboundMessage and publish it."""
        msg = InboundMessage(
            channel=self.name,
            sender_id=str(sender_id),
            chat_id=str(chat_id),
            content=content,
            metadata=metadata or {},
        )
        await self.bus.publish_inbound(msg)
        return msg

    def is_allowed(self, sender_id: str) -> bool:
        """
        Check if a sender is allowed to issue commands.
        """
        allow_list = getattr(self.config, "allow_from", [])

        if not allow_list:
            return True

        return str(sender_id) in allow_list
