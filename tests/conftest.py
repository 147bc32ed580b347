import asyncio
from typing import Callable, Optional

import pytest

from zentpi.api.models import ZenController
from zentpi.io.command import ZenClient
from zentpi.io.frame import ResponseType, checksum

CONTROLLER_MAC = "00:11:22:33:44:55"


class FakeTransport:
    """Records datagrams instead of sending them, and can answer them"""

    def __init__(self, responder: Optional[Callable[[bytes], Optional[bytes]]] = None):
        self.sent: list[tuple[bytes, tuple]] = []
        self.responder = responder
        self.receiver: Optional[Callable[[bytes, tuple], None]] = None
        self.fail: Optional[Exception] = None
        self.closed = False

    def sendto(self, data, addr):
        if self.fail:
            raise self.fail
        self.sent.append((bytes(data), addr))
        if self.responder and self.receiver:
            reply = self.responder(bytes(data))
            if reply is not None:
                asyncio.get_running_loop().call_soon(self.receiver, reply, addr)

    def is_closing(self):
        return self.closed

    def close(self):
        self.closed = True

    def get_extra_info(self, name, default=None):
        if name == "sockname":
            return ("0.0.0.0", 40000)
        return default

    def seqs(self) -> list[int]:
        return [frame[1] for frame, _ in self.sent]


def make_client(responder=None, **kwargs) -> ZenClient:
    client = ZenClient(**kwargs)
    transport = FakeTransport(responder)
    transport.receiver = client._receive_response
    client._transport = transport
    return client


def response_frame(response_type: int, seq: int, data: bytes | list[int] = b"") -> bytes:
    frame = bytes([response_type, seq, len(data)]) + bytes(data)
    return frame + bytes([checksum(frame)])


def reply_ok(frame: bytes) -> bytes:
    return response_frame(ResponseType.OK, frame[1])


def reply_answer(data: bytes | list[int]) -> Callable[[bytes], bytes]:
    def responder(frame: bytes) -> bytes:
        return response_frame(ResponseType.ANSWER, frame[1], data)
    return responder


def event_packet(mac: bytes, target: int, event_code: int, payload: bytes | list[int] = b"") -> bytes:
    packet = bytes([0x5A, 0x43]) + mac + target.to_bytes(2, "big") + bytes([event_code, len(payload)]) + bytes(payload)
    return packet + bytes([checksum(packet)])


async def settle(rounds: int = 10):
    """Let callbacks scheduled with call_soon run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def controller() -> ZenController:
    return ZenController(id=1, host="192.0.2.10", mac=CONTROLLER_MAC)


@pytest.fixture
def controller_mac() -> bytes:
    return bytes.fromhex(CONTROLLER_MAC.replace(":", ""))
