"""HQBot Entry Point."""

import asyncio
import os
import signal
import sys

from loguru import logger

from config import load_config, skill_settings
from core.bus import MessageBus
from core.llm import AIClient
from core.loop import CommandLoop
from core.metrics import MetricsCollector
from core.skills import SkillLoader, SkillRegistry
from core.store import JsonStore
from channels.web import WebChannel

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logger.remove()
logger.add(sys.stderr, level=LOG_LEVEL)
os.makedirs("logs", exist_ok=True)
logger.add(
    "logs/hqbot.log",
    rotation="1 MB",
    retention="10 days",
    level="DEBUG",
    filter=lambda r: r["level"].no >= 20 or "⏱" in r["message"],
)


async def main():

    config = load_config()
    logger.info("Starting HQBot...")

    store = JsonStore(config.data_dir)
    ai = None
    if config.llm.api_key or config.llm.base_url:
        ai = AIClient(config.llm.model, api_key=config.llm.api_key, base_url=config.llm.base_url)

    registry = SkillRegistry({"memory": store, "ai": ai, "config": skill_settings(config)})
    metrics = MetricsCollector().attach(registry)

    loader = SkillLoader(
        skill_dirs=config.skills.dirs,
        settings=skill_settings(config),
        entries=config.skills.entries,
    )
    await loader.register_all(registry)
    await registry.initialize()

    bus = MessageBus()
    loop_runner = CommandLoop(bus, registry, auto_repo=config.auto_repo)

    channels = []
    if config.web.enabled:
        web_channel = WebChannel(config, bus, registry, metrics=metrics)
        channels.append(web_channel)
        bus.subscribe_outbound(web_channel.name, web_channel.send)
        logger.info("Web channel initialized")

    tasks = []
    tasks.append(asyncio.create_task(bus.dispatch_outbound()))
    tasks.append(asyncio.create_task(loop_runner.run()))
    if config.skills.watch:
        tasks.append(asyncio.create_task(loader.watch(registry)))

    for channel in channels:
        tasks.append(asyncio.create_task(channel.start()))

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)
    else:

        async def wakeup():
            while not stop_event.is_set():
                await asyncio.sleep(1)

        tasks.append(asyncio.create_task(wakeup()))

    await stop_event.wait()

    logger.info("Shutting down...")

    for channel in channels:
        await channel.stop()

    loader.stop_watching()
    bus.stop()
    await loop_runner.stop()
    await registry.shutdown()

    for task in tasks:
        task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("HQBot stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("Fatal error during startup")
        sys.exit(1)
