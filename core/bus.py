"""Async message bus between channels and the command loop."""

import asyncio
from typing import Awaitable, Callable, Dict, List

from loguru import logger

from core.events import InboundMessage, OutboundMessage

OutboundHandler = Callable[[OutboundMessage], Awaitable[None]]


class MessageBus:
    """
    Two queues: channels publish inbound commands, the loop publishes replies.
    `dispatch_outbound()` fans replies out to the channel they belong to.
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._subscribers: Dict[str, List[OutboundHandler]] = {}
        self._running = True

    async def publish_inbound(self, msg: InboundMessage) -> None:
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        await self.outbound.put(msg)

    async def consume_outbound(self) -> OutboundMessage:
        return await self.outbound.get()

    def subscribe_outbound(self, channel: str, handler: OutboundHandler) -> None:
        self._subscribers.setdefault(channel, []).append(handler)

    async def dispatch_outbound(self) -> None:
        """Deliver outbound messages to subscribers until `stop()`."""
        while self._running:
            try:
                msg = await asyncio.wait_for(self.outbound.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            handlers = self._subscribers.get(msg.channel, [])
            if not handlers:
                logger.debug(f"No subscriber for outbound channel '{msg.channel}'")
            for handler in handlers:
                try:
                    await handler(msg)
                except Exception as e:
                    logger.error(f"Error dispatching to {msg.channel}: {e}")

    def stop(self) -> None:
        self._running = False
