"""
API-level type definitions.

This module contains types and enums that belong to the API layer:
- DALI address types, instance types, colour types
- Controller error codes
- Event codes, masks and modes used by the TPI protocol
- Constants used by the API layer
"""

from enum import Enum
from typing import Iterable, Self
from dataclasses import dataclass


class ZenAddressType(Enum):
    BROADCAST = 0
    ECG = 1  # Control Gear
    ECD = 2  # Control Device
    GROUP = 3


class ZenInstanceType(Enum):
    PUSH_BUTTON = 0x01
    ABSOLUTE_INPUT = 0x02
    OCCUPANCY_SENSOR = 0x03
    LIGHT_SENSOR = 0x04
    GENERAL_SENSOR = 0x06


class ZenColourType(Enum):
    XY = 0x10
    TC = 0x20  # Tunable White
    RGBWAF = 0x80


class ZenErrorCode(Enum):
    CHECKSUM = 0x01           # Checksum error on the DALI bus
    SHORT_CIRCUIT = 0x02      # A short on the DALI line was detected
    RECEIVE_ERROR = 0x03
    UNKNOWN_CMD = 0x04        # The command in the request is unrecognised
    PAID_FEATURE = 0xB0       # The command requires a paid feature not purchased or enabled
    INVALID_ARGS = 0xB1
    CMD_REFUSED = 0xB2        # The command couldn't be processed
    QUEUE_FAILURE = 0xB3      # A queue or buffer required to process the command is full or broken
    RESPONSE_UNAVAIL = 0xB4
    OTHER_DALI_ERROR = 0xB5
    MAX_LIMIT = 0xB6          # A resource limit was reached on the controller
    UNEXPECTED_RESULT = 0xB7
    UNKNOWN_TARGET = 0xB8     # Device doesn't exist


@dataclass
class ZenEventMode:
    enabled: bool = False
    filtering: bool = False
    unicast: bool = False
    multicast: bool = False
    reserved: int = 0x00  # bits 2-5, carried through untouched

    def bitmask(self) -> int:
        mode_flag = self.reserved & 0x3C
        if self.enabled: mode_flag |= 0x01
        if self.filtering: mode_flag |= 0x02
        if self.unicast: mode_flag |= 0x40
        if not self.multicast: mode_flag |= 0x80  # inverted on the wire
        return mode_flag

    @classmethod
    def from_byte(cls, mode_flag: int) -> Self:
        return cls(
            enabled = (mode_flag & 0x01) != 0,
            filtering = (mode_flag & 0x02) != 0,
            unicast = (mode_flag & 0x40) != 0,
            multicast = (mode_flag & 0x80) == 0,
            reserved = mode_flag & 0x3C,
        )


class ZenEventCode(Enum):
    BUTTON_PRESS = 0x00
    BUTTON_HOLD = 0x01
    ABSOLUTE_INPUT = 0x02
    LEVEL_CHANGE = 0x03
    GROUP_LEVEL_CHANGE = 0x04
    SCENE_CHANGE = 0x05
    IS_OCCUPIED = 0x06
    SYSTEM_VARIABLE_CHANGE = 0x07
    COLOUR_CHANGE = 0x08
    PROFILE_CHANGE = 0x09


@dataclass
class ZenEventMask:
    button_press: bool = False
    button_hold: bool = False
    absolute_input: bool = False
    level_change: bool = False
    group_level_change: bool = False
    scene_change: bool = False
    is_occupied: bool = False
    system_variable_change: bool = False
    colour_change: bool = False
    profile_change: bool = False

    @classmethod
    def all_events(cls) -> Self:
        return cls.from_events(ZenEventCode)

    @classmethod
    def from_events(cls, events: Iterable[ZenEventCode]) -> Self:
        mask = cls()
        for event in events:
            mask.add(event)
        return mask

    @classmethod
    def from_upper_lower(cls, upper: int, lower: int) -> Self:
        return cls.from_double_byte((upper << 8) | lower)

    @classmethod
    def from_double_byte(cls, event_mask: int) -> Self:
        return cls.from_events(code for code in ZenEventCode if event_mask & (1 << code.value))

    def has(self, event: ZenEventCode) -> bool:
        return getattr(self, event.name.lower())

    def add(self, event: ZenEventCode) -> None:
        setattr(self, event.name.lower(), True)

    def remove(self, event: ZenEventCode) -> None:
        setattr(self, event.name.lower(), False)

    def events(self) -> list[ZenEventCode]:
        return [code for code in ZenEventCode if self.has(code)]

    def bitmask(self) -> int:
        event_mask = 0x00
        for code in self.events():
            event_mask |= (1 << code.value)
        return event_mask

    def upper(self) -> int:
        return (self.bitmask() >> 8) & 0xFF

    def lower(self) -> int:
        return self.bitmask() & 0xFF


# API-level constants
class Const:
    """API-level constants"""
    # UDP protocol
    DEFAULT_UNICAST_PORT = 5108  # Controller command port, and default unicast event port
    MULTICAST_GROUP = "239.255.90.67"
    MULTICAST_PORT = 6969

    # DALI limits
    MAX_ECG = 64  # 0-63
    MAX_ECD = 64  # 0-63
    MAX_INSTANCE = 32  # 0-31
    MAX_GROUP = 16  # 0-15
    MAX_SCENE = 12  # 0-11
    MAX_SYSVAR = 148  # 0-147
    MAX_LEVEL = 254  # 255 is mask value (i.e. no change)
    MIN_KELVIN = 1000
    MAX_KELVIN = 20000

    # Colour wire encoding
    COLOUR_NO_VALUE = 0xFF
    COLOUR_MAX_VALUE = 0xFE
