"""
zentpi API-level models.

This module contains the value objects used by the TPI protocol:
- ZenController, ZenAddress, ZenInstance (who a command or event refers to)
- ZenScene (a group scene and its label)
- arc_level_to_percentage, percentage_to_arc_level (the DALI dimming curve)
- ZenColour (tagged colour value and its wire encoding)
"""

import colorsys
import math
from dataclasses import dataclass
from typing import Optional, Self

from .types import ZenAddressType, ZenInstanceType, ZenColourType, Const


@dataclass(frozen=True)
class ZenController:
    """Represents a ZenControl controller"""
    id: int
    host: str
    port: int = Const.DEFAULT_UNICAST_PORT
    mac: Optional[str] = None  # Only used to attribute event packets
    label: Optional[str] = None
    filtering: bool = False

    def matches_mac(self, mac: str | bytes) -> bool:
        """Case and separator insensitive comparison against this controller's MAC address"""
        if not self.mac:
            return False
        if isinstance(mac, (bytes, bytearray)):
            mac = mac.hex()
        return _normalise_mac(mac) == _normalise_mac(self.mac)

    def __repr__(self) -> str:
        return f"ZenController({self.id}, {self.host}:{self.port})"


def _normalise_mac(mac: str) -> str:
    return "".join(c for c in mac.lower() if c not in ":-. ")


@dataclass
class ZenAddress:
    """Represents a DALI address"""
    controller: ZenController
    type: ZenAddressType
    number: int

    @classmethod
    def broadcast(cls, controller: ZenController) -> Self:
        return cls(controller=controller, type=ZenAddressType.BROADCAST, number=255)

    def ecg(self) -> int:
        if self.type == ZenAddressType.ECG: return self.number
        raise ValueError("Address is not a Control Gear")

    def ecg_or_group(self) -> int:
        if self.type == ZenAddressType.ECG: return self.number
        if self.type == ZenAddressType.GROUP: return self.number+64
        raise ValueError("Address is not a Control Gear or Group")

    def ecg_or_group_or_broadcast(self) -> int:
        if self.type == ZenAddressType.ECG: return self.number
        if self.type == ZenAddressType.GROUP: return self.number+64
        if self.type == ZenAddressType.BROADCAST: return 255
        raise ValueError("Address is not a Control Gear, Group or Broadcast")

    def ecg_or_ecd(self) -> int:
        if self.type == ZenAddressType.ECG: return self.number
        if self.type == ZenAddressType.ECD: return self.number+64
        raise ValueError("Address is not a Control Gear or Control Device")

    def ecg_or_ecd_or_broadcast(self) -> int:
        if self.type == ZenAddressType.ECG: return self.number
        if self.type == ZenAddressType.ECD: return self.number+64
        if self.type == ZenAddressType.BROADCAST: return 255
        raise ValueError("Address is not a Control Gear, Control Device or Broadcast")

    def ecd(self) -> int:
        if self.type == ZenAddressType.ECD: return self.number+64
        raise ValueError("Address is not a Control Device")

    def group(self) -> int:
        if self.type == ZenAddressType.GROUP: return self.number
        raise ValueError("Address is not a Group")

    def __post_init__(self):
        match self.type:
            case ZenAddressType.BROADCAST:
                if self.number != 255:
                    raise ValueError("Broadcast address must be 255")
            case ZenAddressType.ECG:
                if not (0 <= self.number < Const.MAX_ECG):
                    raise ValueError(f"ECG address must be 0-{Const.MAX_ECG-1}, got {self.number}")
            case ZenAddressType.ECD:
                if not (0 <= self.number < Const.MAX_ECD):
                    raise ValueError(f"ECD address must be 0-{Const.MAX_ECD-1}, got {self.number}")
            case ZenAddressType.GROUP:
                if not (0 <= self.number < Const.MAX_GROUP):
                    raise ValueError(f"Group address must be 0-{Const.MAX_GROUP-1}, got {self.number}")

    def __repr__(self) -> str:
        return f"ZenAddress({self.type.name}, {self.controller.id}.{self.number})"


@dataclass
class ZenInstance:
    """Represents a DALI ECD instance"""
    address: ZenAddress
    type: ZenInstanceType
    number: int

    def __post_init__(self):
        if not 0 <= self.number < Const.MAX_INSTANCE:
            raise ValueError(f"Instance number must be between 0 and {Const.MAX_INSTANCE-1}, received {self.number}")

    def __repr__(self) -> str:
        return f"ZenInstance({self.address!r}, {self.type.name}, {self.number})"


@dataclass
class ZenScene:
    """A DALI scene on a group, with its label if it has one"""
    group: ZenAddress
    number: int
    label: Optional[str] = None

    def __post_init__(self):
        if self.group.type != ZenAddressType.GROUP:
            raise ValueError("Scenes belong to a Group address")
        if not 0 <= self.number < Const.MAX_SCENE:
            raise ValueError(f"Scene number must be between 0 and {Const.MAX_SCENE-1}, received {self.number}")

    def __repr__(self) -> str:
        return f"ZenScene({self.group!r}, {self.number}, {self.label!r})"


# DALI logarithmic dimming curve: arc level 1 is 0.1%, 254 is 100%
def arc_level_to_percentage(arc_level: int) -> float:
    """Convert a DALI arc level (0-254) to a brightness percentage (0-100)"""
    if not 0 <= arc_level <= Const.MAX_LEVEL: raise ValueError(f"Arc level must be between 0 and {Const.MAX_LEVEL}, got {arc_level}")
    if arc_level == 0:
        return 0.0
    return 10 ** (3 * (arc_level - 1) / 253 - 1)


def percentage_to_arc_level(percentage: float) -> int:
    """Convert a brightness percentage (0-100) to the nearest DALI arc level (0-254)"""
    if not 0 <= percentage <= 100: raise ValueError(f"Percentage must be between 0 and 100, got {percentage}")
    if percentage == 0:
        return 0
    # Anything dimmer than arc level 1 still lights at the minimum
    return max(1, round((math.log10(percentage) + 1) * 253 / 3 + 1))


# sRGB (D65) <-> CIE XYZ
_XYZ_TO_RGB = ((3.2406, -1.5372, -0.4986), (-0.9689, 1.8758, 0.0415), (0.0557, -0.2040, 1.0570))
_RGB_TO_XYZ = ((0.4124, 0.3576, 0.1805), (0.2126, 0.7152, 0.0722), (0.0193, 0.1192, 0.9505))
_D65_WHITE = (0.3127, 0.3290)


def _gamma(c: float) -> float:
    return 12.92 * c if c <= 0.0031308 else 1.055 * (c ** (1 / 2.4)) - 0.055


def _inverse_gamma(c: float) -> float:
    return c / 12.92 if c <= 0.04045 else ((c + 0.055) / 1.055) ** 2.4


@dataclass
class ZenColour:
    """Represents a DALI colour: exactly one of Tc (kelvin), RGBWAF or CIE xy"""
    type: ZenColourType
    kelvin: Optional[int] = None
    r: Optional[int] = None
    g: Optional[int] = None
    b: Optional[int] = None
    w: Optional[int] = None
    a: Optional[int] = None
    f: Optional[int] = None
    x: Optional[int] = None
    y: Optional[int] = None

    def __post_init__(self):
        match self.type:
            case ZenColourType.TC:
                if self.kelvin is None or not Const.MIN_KELVIN <= self.kelvin <= Const.MAX_KELVIN:
                    raise ValueError(f"Kelvin must be between {Const.MIN_KELVIN} and {Const.MAX_KELVIN}, received {self.kelvin}")
            case ZenColourType.RGBWAF:
                for channel in ("r", "g", "b"):
                    value = getattr(self, channel)
                    if value is None or not 0 <= value <= 255:
                        raise ValueError(f"{channel.upper()} must be between 0 and 255, received {value}")
                for channel in ("w", "a", "f"):
                    value = getattr(self, channel)
                    if value is not None and not 0 <= value <= 255:
                        raise ValueError(f"{channel.upper()} must be between 0 and 255, received {value}")
            case ZenColourType.XY:
                for axis in ("x", "y"):
                    value = getattr(self, axis)
                    if value is None or not 0 <= value <= 65535:
                        raise ValueError(f"{axis.upper()} must be between 0 and 65535, received {value}")
            case _:
                raise ValueError(f"Unsupported colour type: {self.type}")

    @classmethod
    def from_bytes(cls, data: bytes) -> Optional[Self]:
        """Decode a tagged colour. Returns None if data is empty or not a recognised encoding."""
        if not data:
            return None
        if data[0] == ZenColourType.RGBWAF.value and len(data) == 7:
            optional = [None if v == Const.COLOUR_NO_VALUE else v for v in data[4:7]]
            return cls(type=ZenColourType.RGBWAF, r=data[1], g=data[2], b=data[3], w=optional[0], a=optional[1], f=optional[2])
        if data[0] == ZenColourType.TC.value and len(data) in (3, 7):
            kelvin = (data[1] << 8) | data[2]
            return cls(type=ZenColourType.TC, kelvin=kelvin)
        if data[0] == ZenColourType.XY.value and len(data) in (5, 7):
            x = (data[1] << 8) | data[2]
            y = (data[3] << 8) | data[4]
            return cls(type=ZenColourType.XY, x=x, y=y)
        return None

    def to_bytes(self) -> bytes:
        """Encode as a type tag followed by six value bytes, padded with the no-value byte."""
        match self.type:
            case ZenColourType.TC:
                values = [self.kelvin >> 8, self.kelvin]
            case ZenColourType.RGBWAF:
                values = [self.r, self.g, self.b, self.w, self.a, self.f]
            case ZenColourType.XY:
                values = [self.x >> 8, self.x, self.y >> 8, self.y]
        values = [Const.COLOUR_NO_VALUE if v is None else min(v & 0xFF, Const.COLOUR_MAX_VALUE) for v in values]
        values += [Const.COLOUR_NO_VALUE] * (6 - len(values))
        return bytes([self.type.value] + values)

    def to_hsv(self) -> tuple[float, float, float]:
        """Returns (hue in degrees, saturation 0-1, value 0-1). Not defined for Tc colours."""
        match self.type:
            case ZenColourType.RGBWAF:
                h, s, v = colorsys.rgb_to_hsv(self.r / 255, self.g / 255, self.b / 255)
            case ZenColourType.XY:
                h, s, v = colorsys.rgb_to_hsv(*self._xy_to_rgb())
            case _:
                raise ValueError(f"HSV conversion is not supported for {self.type.name} colours")
        return h * 360, s, v

    @classmethod
    def from_hsv(cls, h: float, s: float, v: float, type: ZenColourType = ZenColourType.RGBWAF) -> Self:
        """Build an RGBWAF or XY colour from hue in degrees and saturation/value 0-1."""
        r, g, b = colorsys.hsv_to_rgb((h % 360) / 360, s, v)
        match type:
            case ZenColourType.RGBWAF:
                return cls(type=type, r=round(r * 255), g=round(g * 255), b=round(b * 255))
            case ZenColourType.XY:
                x, y = cls._rgb_to_xy(r, g, b)
                return cls(type=type, x=round(x * 65535), y=round(y * 65535))
        raise ValueError(f"HSV conversion is not supported for {type.name} colours")

    def _xy_to_rgb(self) -> tuple[float, float, float]:
        x, y = self.x / 65535, self.y / 65535
        if y == 0:
            return 0.0, 0.0, 0.0
        xyz = (x / y, 1.0, (1 - x - y) / y)
        rgb = [max(0.0, sum(m * c for m, c in zip(row, xyz))) for row in _XYZ_TO_RGB]
        peak = max(rgb)
        if peak > 1:
            rgb = [c / peak for c in rgb]
        r, g, b = (min(1.0, _gamma(c)) for c in rgb)
        return r, g, b

    @staticmethod
    def _rgb_to_xy(r: float, g: float, b: float) -> tuple[float, float]:
        linear = [_inverse_gamma(c) for c in (r, g, b)]
        X, Y, Z = (sum(m * c for m, c in zip(row, linear)) for row in _RGB_TO_XYZ)
        total = X + Y + Z
        if total == 0:
            return _D65_WHITE
        return X / total, Y / total

    def __repr__(self) -> str:
        if self.type == ZenColourType.TC:
            return f"ZenColour(kelvin={self.kelvin})"
        if self.type == ZenColourType.RGBWAF:
            return f"ZenColour(r={self.r}, g={self.g}, b={self.b}, w={self.w}, a={self.a}, f={self.f})"
        return f"ZenColour(x={self.x}, y={self.y})"
