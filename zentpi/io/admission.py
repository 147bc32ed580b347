"""
Per-controller admission control and sequence number allocation for the command path.

Both are confined to the event loop thread, so no locking is needed.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, Dict, Optional

from ..exceptions import ZenTimeoutError


class ZenAdmission:
    """
    Bounds the number of in-flight requests per controller.
    Callers beyond the ceiling wait in a FIFO queue and are handed a slot as one frees up.
    """

    def __init__(self, ceiling: int = 8):
        if ceiling < 1: raise ValueError("Admission ceiling must be at least 1")
        self.ceiling = ceiling
        self._active: Dict[int, int] = {}
        self._waiting: Dict[int, Deque[asyncio.Future]] = {}

    async def admit(self, controller_id: int) -> None:
        active = self._active.get(controller_id, 0)
        if active < self.ceiling:
            self._active[controller_id] = active + 1
            return

        # Wait for another request to finish
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiting.setdefault(controller_id, deque()).append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # The slot was already handed over, pass it on
                self.release(controller_id)
            else:
                try:
                    self._waiting[controller_id].remove(fut)
                except ValueError:
                    pass
            raise

    def release(self, controller_id: int) -> None:
        waiting = self._waiting.get(controller_id)
        while waiting:
            fut = waiting.popleft()
            if not fut.done():
                # Hand the slot straight to the next caller; the active count is unchanged
                fut.set_result(None)
                return
        active = self._active.get(controller_id, 0)
        if active > 0:
            self._active[controller_id] = active - 1

    def active(self, controller_id: int) -> int:
        return self._active.get(controller_id, 0)

    def waiting(self, controller_id: int) -> int:
        return sum(1 for fut in self._waiting.get(controller_id, ()) if not fut.done())


class ZenSequenceAllocator:
    """
    Hands out one-byte sequence numbers, never one that is still pending.
    The number space is shared by every controller because all responses arrive on one socket.
    """
    SEQUENCE_SPACE = 256
    BACKOFF = (0.01, 0.1, 1.0)  # Seconds to wait after each full wrap without a free number

    def __init__(self, in_use: Callable[[int], bool], logger: Optional[logging.Logger] = None):
        self.in_use = in_use
        self.logger = logger or logging.getLogger(__name__)
        self.backoff = self.BACKOFF
        self._next_seq: int = 0

    async def allocate(self) -> int:
        """Allocate a sequence number, waiting briefly if all are in use"""
        for attempt in range(len(self.backoff) + 1):
            seq = self._scan()
            if seq is not None:
                return seq
            if attempt < len(self.backoff):
                self.logger.warning("No free sequence numbers for message. Waiting for a sequence number.")
                await asyncio.sleep(self.backoff[attempt])
        self.logger.error("Failed to find a free sequence number for message.")
        raise ZenTimeoutError("Failed to find a free sequence number for message")

    def _scan(self) -> Optional[int]:
        for _ in range(self.SEQUENCE_SPACE):
            proposed_seq = self._next_seq
            self._next_seq = (self._next_seq + 1) % self.SEQUENCE_SPACE
            if not self.in_use(proposed_seq):
                return proposed_seq
        return None
