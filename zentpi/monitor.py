"""
zentpi-monitor: print every TPI event from the controllers in a config file.

Usage:
    zentpi-monitor config.yaml [--traffic] [--debug]
"""

import argparse
import asyncio
import logging
import sys
import time
from typing import Optional

from colorama import Fore, Style, just_fix_windows_console

from .api.protocol import ZenProtocol
from .api.types import ZenEventCode
from .config import load_config
from .exceptions import ZenError
from .utils import run_with_keyboard_interrupt


def setup_logging(debug: bool = False) -> logging.Logger:
    """Console logging for the monitor"""
    logger = logging.getLogger("zentpi")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s.%(msecs)03d %(levelname)s: %(message)s', datefmt='%H:%M:%S'
    ))
    logger.addHandler(console_handler)
    return logger


def print_event(code: ZenEventCode):
    """Make a callback that prints one kind of event"""
    def callback(payload: bytes, **kwargs) -> None:
        details = "  ".join(f"{key}={value!r}" for key, value in kwargs.items())
        print(Fore.WHITE + Style.DIM + time.strftime("%H:%M:%S") + Style.RESET_ALL + "  "
              + Fore.GREEN + code.name.ljust(24) + Style.RESET_ALL
              + Fore.CYAN + details + Style.RESET_ALL)
    return callback


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="zentpi-monitor", description="Print TPI events from zencontrol controllers")
    parser.add_argument("config", help="path to the YAML config file")
    parser.add_argument("--traffic", action="store_true", help="print raw request, response and event frames")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


async def monitor(config_path: str, traffic: bool = False, logger: Optional[logging.Logger] = None):
    logger = logger or logging.getLogger("zentpi")
    config = load_config(config_path)
    if traffic:
        config.print_traffic = True

    async with ZenProtocol.from_config(config, logger=logger) as tpi:
        for code in ZenEventCode:
            tpi.events[code] += print_event(code)

        for controller in tpi.controllers:
            try:
                version = await tpi.query_controller_version_number(controller)
                label = await tpi.query_controller_label(controller)
            except ZenError as e:
                logger.error(f"Controller {controller.id} ({controller.host}) is not responding: {e}")
                continue
            print(Fore.MAGENTA + f"Controller {controller.id} ({controller.host}): {label or 'unnamed'}, firmware {version}" + Style.RESET_ALL)

        await tpi.start_event_monitoring()
        print("Listening for events, press Ctrl+C to stop")
        while True:
            await asyncio.sleep(1)


def main(argv=None):
    just_fix_windows_console()
    args = parse_args(argv)
    logger = setup_logging(args.debug)
    sys.exit(run_with_keyboard_interrupt(lambda: monitor(args.config, args.traffic, logger), logger))


if __name__ == "__main__":
    main()
