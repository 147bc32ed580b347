"""
Subscriptions for decoded TPI events.

Each event kind has its own ZenEventSource, and ZenEventHandlers groups them by ZenEventCode.
Callbacks are called with keyword arguments only, and may be plain functions or coroutines.

Example usage:
def on_level(address, arc_level, **kwargs):
    print(address, arc_level)

tpi.events[ZenEventCode.LEVEL_CHANGE] += on_level
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from .types import ZenEventCode


class ZenEventSource:
    """A list of callbacks for one kind of event"""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self._handlers: list[Callable[..., Any]] = []
        self._tasks: set[asyncio.Task] = set()

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def __bool__(self) -> bool:
        return bool(self._handlers)

    def add(self, handler: Callable[..., Any]):
        self._handlers.append(handler)
        return self

    def remove(self, handler: Callable[..., Any]):
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def handlers(self) -> tuple:
        return tuple(self._handlers)

    def fire(self, **kwargs):
        """Call every handler. One failing handler doesn't stop the others."""
        for handler in self.handlers():
            try:
                result = handler(**kwargs)
            except Exception as e:
                self.logger.exception(f"Error in {self.name} callback {handler!r}: {e}")
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Error in {self.name} callback: {exc!r}")


class ZenEventHandlers:
    """One ZenEventSource per ZenEventCode"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._sources: dict[ZenEventCode, ZenEventSource] = {
            code: ZenEventSource(code.name.lower(), logger) for code in ZenEventCode
        }

    def __getitem__(self, code: ZenEventCode) -> ZenEventSource:
        return self._sources[code]

    def __setitem__(self, code: ZenEventCode, source: ZenEventSource):
        # Allows `handlers[code] += callback`
        if source is not self._sources[code]:
            raise ValueError("Event sources can't be replaced")

    def subscribe(self, code: ZenEventCode, handler: Callable[..., Any]):
        self._sources[code].add(handler)

    def unsubscribe(self, code: ZenEventCode, handler: Callable[..., Any]):
        self._sources[code].remove(handler)

    def has_subscribers(self, code: ZenEventCode) -> bool:
        return bool(self._sources[code])

    def fire(self, code: ZenEventCode, **kwargs):
        self._sources[code].fire(**kwargs)
