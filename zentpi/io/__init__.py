"""
Wire-level protocol implementation.

This module contains the lowest-level communication components:
- Message framing, checksums and parsing
- ZenAdmission, ZenSequenceAllocator - per-controller flow control and sequence numbers
- ZenClient - the shared command socket, with retries and timeouts
- ZenListener, ZenEvent - the event socket and raw event data from the wire
"""

from .frame import Response, ResponseType, build_request, parse_response, checksum, format_bytes
from .admission import ZenAdmission, ZenSequenceAllocator
from .command import ZenClient, PendingRequest, ClientConst
from .event import ZenListener, ZenEvent, EventConst

__all__ = [
    "ZenClient",
    "ZenListener",
    "ZenEvent",
    "ZenAdmission",
    "ZenSequenceAllocator",
    "PendingRequest",
    "Response",
    "ResponseType",
    "EventConst",
    "ClientConst",
    "build_request",
    "parse_response",
    "checksum",
    "format_bytes",
]
