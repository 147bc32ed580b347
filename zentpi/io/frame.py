"""
Wire framing for the TPI command path.

Request:  [MAGIC, seq, command, data..., checksum]
Response: [response_type, seq, data_len, data..., checksum]
  - checksum = XOR of all preceding bytes
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional, Tuple

from ..exceptions import ZenResponseError

MAGIC = 0x04
MIN_RESPONSE_LENGTH = 4  # response_type + seq + data_len + checksum


class ResponseType(IntEnum):
    """Types of responses from the controller"""
    OK = 0xA0
    ANSWER = 0xA1
    NO_ANSWER = 0xA2
    ERROR = 0xA3


@dataclass
class Response:
    response_type: ResponseType | int  # unknown codes are passed through as int
    seq: int
    data: bytes = b""
    raw_rcvd: Optional[bytes] = None
    addr: Optional[Tuple[str, int]] = None
    timestamp: float = field(default_factory=time.time)


def checksum(buf: Iterable[int]) -> int:
    acc = 0x00
    for byte in buf:
        acc ^= byte
    return acc & 0xFF


def build_request(seq: int, command: int, data: bytes | list[int]) -> bytes:
    """Convert a request to wire format"""
    req = bytes([MAGIC, seq & 0xFF, command & 0xFF]) + bytes(d & 0xFF for d in data)
    return req + bytes([checksum(req)])


def parse_response(datagram: bytes, addr: Optional[Tuple[str, int]] = None) -> Response:
    """Validate a response datagram. Raises ZenResponseError if it is malformed."""

    # Too short to be a valid packet
    if len(datagram) < MIN_RESPONSE_LENGTH:
        raise ZenResponseError(f"Response too short: {len(datagram)} bytes")

    response_type_byte = datagram[0]
    sequence_byte = datagram[1]
    data_length_byte = datagram[2]
    checksum_byte = datagram[-1]

    # Checksum mismatch
    expected = checksum(datagram[:-1])
    if checksum_byte != expected:
        raise ZenResponseError(f"Invalid checksum: expected 0x{expected:02X} received 0x{checksum_byte:02X}")

    # Packet length mismatch
    if len(datagram) != MIN_RESPONSE_LENGTH + data_length_byte:
        raise ZenResponseError(f"Length mismatch: expected {MIN_RESPONSE_LENGTH + data_length_byte} received {len(datagram)}")

    if response_type_byte in ResponseType._value2member_map_:
        response_type = ResponseType(response_type_byte)
    else:
        response_type = response_type_byte

    return Response(response_type, seq=sequence_byte, data=bytes(datagram[3:-1]), raw_rcvd=bytes(datagram), addr=addr)


def format_bytes(buf: Optional[bytes]) -> str:
    return f"[{', '.join(f'0x{b:02X}' for b in buf or b'')}]"
