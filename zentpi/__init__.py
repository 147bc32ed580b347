"""
zentpi

A Python driver for the zencontrol TPI Advanced UDP protocol.

This library provides two layers:

1. **io**: Wire-level protocol implementation (framing, sequence numbers, retries, event socket)
2. **api**: TPI commands and typed event notifications built on io

Example usage:
    import zentpi

    controller = zentpi.ZenController(id=1, host="192.168.1.100", mac="00:11:22:33:44:55")
    async with zentpi.ZenProtocol(controllers=[controller]) as tpi:
        group = zentpi.ZenAddress(controller, zentpi.ZenAddressType.GROUP, 3)
        await tpi.dali_arc_level(group, 254)
"""

# API-level models
from .api.models import ZenController, ZenAddress, ZenInstance, ZenColour, ZenScene, arc_level_to_percentage, percentage_to_arc_level
from .api.protocol import ZenProtocol
from .api.events import ZenEventSource, ZenEventHandlers

# Low-level models
from .io import ZenClient, ZenListener, ZenEvent, Response, ResponseType

# Shared types and exceptions
from .api.types import ZenAddressType, ZenInstanceType, ZenColourType, ZenErrorCode, ZenEventCode, ZenEventMask, ZenEventMode
from .exceptions import ZenError, ZenTimeoutError, ZenResponseError, ZenProtocolError, ZenConnectionError, ZenConfigurationError

# Configuration and utilities
from .config import ZenConfig, load_config
from .utils import run_with_keyboard_interrupt

__version__ = "0.1.0"

# Public API - these are the main classes users should import
__all__ = [
    # API-level models
    "ZenController",
    "ZenAddress",
    "ZenInstance",
    "ZenProtocol",
    "ZenColour",
    "ZenScene",
    "arc_level_to_percentage",
    "percentage_to_arc_level",
    "ZenEventSource",
    "ZenEventHandlers",

    # Low-level models (for advanced users)
    "ZenClient",
    "ZenListener",
    "ZenEvent",
    "Response",
    "ResponseType",

    # Exceptions
    "ZenError",
    "ZenTimeoutError",
    "ZenResponseError",
    "ZenProtocolError",
    "ZenConnectionError",
    "ZenConfigurationError",

    # Types and enums
    "ZenAddressType",
    "ZenInstanceType",
    "ZenColourType",
    "ZenErrorCode",
    "ZenEventCode",
    "ZenEventMask",
    "ZenEventMode",

    # Configuration and utilities
    "ZenConfig",
    "load_config",
    "run_with_keyboard_interrupt",
]
