"""
Command loop: pulls inbound messages off the bus, routes them through the
skill registry and publishes the replies.
"""

import asyncio
import time
from typing import Any, Dict, Optional, Set, Tuple

from loguru import logger

from core.bus import MessageBus
from core.events import InboundMessage, OutboundMessage
from core.skills.base import RoutingResult
from core.skills.registry import SkillRegistry

DEDUP_WINDOW_S = 2.0


class CommandLoop:
    def __init__(
        self,
        bus: MessageBus,
        registry: SkillRegistry,
        auto_repo: Optional[str] = None,
        dedup_window: float = DEDUP_WINDOW_S,
    ):
        self.bus = bus
        self.registry = registry
        self.auto_repo = auto_repo
        self.dedup_window = dedup_window
        self._running = False
        self._last_msg: Dict[str, Tuple[str, float]] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def run(self) -> None:
        self._running = True
        logger.info(f"Command loop started ({len(self.registry.skill_names())} skills)")
        while self._running:
            try:
                msg = await self.bus.consume_inbound()
                task = asyncio.create_task(self.process_message(msg))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in command loop: {e}")

    async def stop(self) -> None:
        self._running = False
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def is_duplicate(self, msg: InboundMessage) -> bool:
        """True when the same sender sent the same text to the same chat within the window."""
        now_ts = time.monotonic()
        key = f"{msg.session_key}|{msg.sender_id}"
        content = msg.content.strip().lower()
        last = self._last_msg.get(key)
        if last is not None and last[0] == content and (now_ts - last[1]) <= self.dedup_window:
            return True
        self._last_msg[key] = (content, now_ts)
        return False

    def build_context(self, msg: InboundMessage) -> Dict[str, Any]:
        async def notify(text: str) -> None:
            await self.bus.publish_outbound(
                OutboundMessage(
                    channel=msg.channel,
                    chat_id=msg.chat_id,
                    content=text,
                    metadata={"reply_to": msg.metadata.get("message_id"), "async": True},
                )
            )

        return {
            "channel": msg.channel,
            "chat_id": msg.chat_id,
            "sender_id": msg.sender_id,
            "session_key": msg.session_key,
            "auto_repo": msg.metadata.get("repo") or self.auto_repo,
            "metadata": dict(msg.metadata),
            "notify": notify,
        }

    async def process_message(self, msg: InboundMessage) -> Optional[RoutingResult]:
        """Route one message. Returns None for skipped duplicates or blank text."""
        if not msg.content or not msg.content.strip():
            return None
        if self.is_duplicate(msg):
            logger.debug(f"Skipping duplicate message in {msg.session_key}: {msg.content[:30]}")
            return None

        started = time.monotonic()
        result = await self.registry.route(msg.content.strip(), self.build_context(msg))
        logger.debug(
            f"⏱ Routed '{msg.content[:30]}' -> {result.skill or '-'} "
            f"in {(time.monotonic() - started) * 1000:.0f}ms"
        )

        content = result.message or result.error or ""
        if result.suggestion and not result.success:
            content = f"{content}\n_{result.suggestion}_" if content else result.suggestion

        await self.bus.publish_outbound(
            OutboundMessage(
                channel=msg.channel,
                chat_id=msg.chat_id,
                content=content,
                metadata={
                    "reply_to": msg.metadata.get("message_id"),
                    "skill": result.skill,
                    "success": result.success,
                },
            )
        )
        return result
