"""Minimal event emitter for registry diagnostics."""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List

from loguru import logger


class EventEmitter:
    """
    Named-event pub/sub. Listeners may be plain functions or coroutines;
    coroutine listeners are scheduled on the running loop.
    A failing listener is logged and never breaks the emitter's caller.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._pending: set = set()

    def on(self, event: str, listener: Callable) -> Callable:
        self._listeners[event].append(listener)
        return listener

    def once(self, event: str, listener: Callable) -> Callable:
        def _wrapper(*args, **kwargs):
            self.off(event, _wrapper)
            return listener(*args, **kwargs)

        return self.on(event, _wrapper)

    def off(self, event: str, listener: Callable) -> bool:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, payload: Any = None) -> bool:
        """Call every listener of `event`. Returns False if there were none."""
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception as e:
                logger.error(f"[Events] Listener for '{event}' failed: {e}")
        return bool(listeners)

    def _on_listener_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Events] Async listener failed: {task.exception()}")
