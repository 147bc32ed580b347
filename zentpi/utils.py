"""
Helpers for running zentpi from a console script
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .exceptions import ZenError


def run_with_keyboard_interrupt(main_func: Callable[[], Awaitable[None]], logger: Optional[logging.Logger] = None) -> int:
    """
    Run an async main function until it finishes or Ctrl+C is pressed, and return an exit status.

    On Ctrl+C asyncio.run() cancels main_func, so any `async with ZenProtocol(...)` inside it
    stops event monitoring and clears unicast targets before we return.
    Library errors (bad config, unreachable controllers, a port already in use) are logged
    rather than shown as a traceback.
    """
    logger = logger or logging.getLogger("zentpi")
    try:
        asyncio.run(main_func())
    except KeyboardInterrupt:
        logger.info("Interrupted, shut down cleanly")
        return 0
    except (ZenError, OSError) as e:
        logger.error(f"Stopped: {e}")
        return 1
    return 0
