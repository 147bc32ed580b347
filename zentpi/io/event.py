"""
zentpi wire-level event listener.

This module implements the event/listener side of ZenControl TPI Advanced using asyncio.
It contains the ZenListener class for receiving multicast or unicast event packets.

Terms:
- Event = A multicast or unicast packet sent by a controller
- Listener = A class which receives Events

Event packet:
  [0x5A, 0x43, mac(6), target(2, big-endian), event_code, payload_len, payload..., checksum]

Example usage:
async def listen_for_events():
    listener = ZenListener(lambda event: print(event), unicast=False)  # Multicast mode
    async with listener:
        await asyncio.sleep(60)

asyncio.run(listen_for_events())
"""

import asyncio
import logging
import socket
import struct
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple

from .frame import checksum, format_bytes


# Event classes
@dataclass
class ZenEvent:
    """Represents a Zen TPI event"""
    raw_data: bytes
    event_code: int
    target: int
    payload: bytes
    mac_address: bytes
    ip_address: str
    ip_port: int
    timestamp: float = field(default_factory=time.time)

    @property
    def mac_string(self) -> str:
        return ':'.join(f'{b:02x}' for b in self.mac_address)


# Constants
class EventConst:
    """Constants for event handling"""
    MAGIC = bytes([0x5A, 0x43])
    MULTICAST_GROUP = "239.255.90.67"
    MULTICAST_PORT = 6969
    HEADER_LENGTH = 12  # magic(2) + mac(6) + target(2) + event_code(1) + payload_len(1)
    MIN_LENGTH = HEADER_LENGTH + 1


class ZenEventProtocol(asyncio.DatagramProtocol):
    def __init__(self, listener: "ZenListener"):
        self.listener = listener
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.listener._receive_event(data, addr)

    def error_received(self, exc):
        self.listener.logger.error(f"Event protocol error: {exc}")

    def connection_lost(self, exc):
        self.listener._connection_lost(self, exc)


class ZenListener:
    """
    Owns the event socket. Two states: stopped and running.
    If the socket closes while running, on_lost is invoked so the owner can restart monitoring.
    """

    def __init__(self,
                 event_handler: Callable[[ZenEvent], None],
                 unicast: bool = False,
                 listen_ip: str = "0.0.0.0",
                 listen_port: int = 0,
                 on_lost: Optional[Callable[[], Awaitable[None] | None]] = None,
                 logger: Optional[logging.Logger] = None):
        self.event_handler = event_handler
        self.unicast = unicast
        self.listen_ip = listen_ip
        self.listen_port = listen_port
        self.on_lost = on_lost
        self.logger = logger or logging.getLogger(__name__)

        self.transport: Optional[asyncio.DatagramTransport] = None
        self.protocol: Optional[ZenEventProtocol] = None
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def typecast(self) -> str:
        return "unicast" if self.unicast else "multicast"

    def is_running(self) -> bool:
        return self._running

    def is_listening(self) -> bool:
        """Check if the socket is open and ready"""
        return self.transport is not None and not self.transport.is_closing()

    def bound_address(self) -> Optional[Tuple[str, int]]:
        if not self.is_listening():
            return None
        return self.transport.get_extra_info('sockname')[:2]

    async def start(self):
        if self.is_listening():
            self.logger.warning("Event listener already running")
            return
        self._running = True
        try:
            await self._create_datagram_endpoint()
        except OSError:
            self._running = False
            raise
        self.logger.info(f"Started event listener in {self.typecast} mode")

    async def stop(self):
        self._running = False
        transport = self.transport
        self.transport = None
        self.protocol = None
        if transport and not transport.is_closing():
            transport.close()
        self.logger.info("Stopped event listener")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def _make_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            if self.unicast:
                sock.bind((self.listen_ip, self.listen_port))
            else:
                sock.bind(("0.0.0.0", EventConst.MULTICAST_PORT))
                group = socket.inet_aton(EventConst.MULTICAST_GROUP)
                mreq = struct.pack('4sl', group, socket.INADDR_ANY)
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    async def _create_datagram_endpoint(self):
        loop = asyncio.get_running_loop()
        try:
            sock = self._make_socket()
        except OSError as e:
            self.logger.critical(f"Failed to create {self.typecast} endpoint: {e}")
            raise
        self.transport, self.protocol = await loop.create_datagram_endpoint(lambda: ZenEventProtocol(self), sock=sock)
        if self.unicast:
            self.logger.info(f"Listening for unicast events on {self.listen_ip}:{self.bound_address()[1]}")
        else:
            self.logger.info(f"Listening for multicast events on {EventConst.MULTICAST_GROUP}:{EventConst.MULTICAST_PORT}")

    def _connection_lost(self, protocol: ZenEventProtocol, exc: Optional[Exception]):
        # Stale notification from a socket we've already replaced or stopped
        if protocol is not self.protocol or not self._running:
            return
        self.transport = None
        self.protocol = None
        self.logger.warning(f"Event socket closed unexpectedly ({exc}), restarting event monitoring")
        if self.on_lost:
            result = self.on_lost()
            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Failed to restart {self.typecast} event listener: {exc!r}")

    def _receive_event(self, data: bytes, addr: Tuple[str, int]):
        """Validate a received packet and hand it to the event handler"""
        event = self.decode(data, addr)
        if event is not None:
            self.event_handler(event)

    def decode(self, data: bytes, addr: Tuple[str, int]) -> Optional[ZenEvent]:
        typecast = self.typecast

        # Drop packet if it doesn't match the expected structure
        if len(data) < 2 or data[0:2] != EventConst.MAGIC:
            self.logger.warning(f"Received {typecast} invalid packet: {addr[0]}:{addr[1]} - {format_bytes(data)}")
            return None
        if len(data) < EventConst.MIN_LENGTH:
            self.logger.warning(f"Received {typecast} packet too short ({len(data)} bytes) from {addr[0]}:{addr[1]}")
            return None

        # Extract values
        mac_address = bytes(data[2:8])
        target = int.from_bytes(data[8:10], byteorder='big')
        event_code = data[10]
        payload_len = data[11]
        payload = bytes(data[12:-1])
        received_checksum = data[-1]

        # Verify checksum
        calculated_checksum = checksum(data[:-1])
        if received_checksum != calculated_checksum:
            self.logger.warning(f"{typecast.capitalize()} packet from {addr[0]}:{addr[1]} has invalid checksum: {calculated_checksum} != {received_checksum}")
            return None

        # Verify data length, but carry on regardless
        if len(payload) != payload_len:
            self.logger.warning(f"{typecast.capitalize()} packet from {addr[0]}:{addr[1]} has invalid payload length: {len(payload)} != {payload_len}")

        self.logger.debug(f"Received {typecast} from {addr[0]}:{addr[1]}: target {target} event {event_code} payload {format_bytes(payload)}")

        return ZenEvent(
            raw_data=bytes(data),
            mac_address=mac_address,
            target=target,
            event_code=event_code,
            payload=payload,
            ip_address=addr[0],
            ip_port=addr[1],
        )
