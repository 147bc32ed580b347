"""
API-level models and protocol implementation.

This module contains models and types that belong to the API layer:
- ZenController, ZenAddress, ZenInstance (API-level concepts)
- ZenProtocol (implements TPI commands and event dispatch)
- ZenColour (colour values used by TPI commands and events)
- ZenScene, arc_level_to_percentage, percentage_to_arc_level
- ZenEventSource, ZenEventHandlers (event subscriptions)
- Types and enums used by the API layer
"""

from .models import ZenController, ZenAddress, ZenInstance, ZenColour, ZenScene, arc_level_to_percentage, percentage_to_arc_level
from .protocol import ZenProtocol
from .events import ZenEventSource, ZenEventHandlers
from .types import ZenAddressType, ZenInstanceType, ZenColourType, ZenErrorCode, ZenEventCode, ZenEventMask, ZenEventMode

__all__ = [
    # API-level models
    "ZenController",
    "ZenAddress",
    "ZenInstance",
    "ZenColour",
    "ZenScene",
    "ZenProtocol",
    "arc_level_to_percentage",
    "percentage_to_arc_level",

    # Subscriptions
    "ZenEventSource",
    "ZenEventHandlers",

    # API-level types
    "ZenAddressType",
    "ZenInstanceType",
    "ZenColourType",
    "ZenErrorCode",
    "ZenEventCode",
    "ZenEventMask",
    "ZenEventMode",
]
