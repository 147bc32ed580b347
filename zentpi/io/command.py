"""
zentpi wire-level command client.

This module implements the command/request side of ZenControl TPI Advanced using asyncio.
It contains the ZenClient class, which sends Requests to any number of controllers over a
single UDP socket and matches Responses back to them by sequence number.

Terms:
- Request = A UDP packet sent by the Client to a controller
- Response = A response to a Request
- Client = A class which sends Requests and receives Responses

Example usage:
async def main():
    controller = ZenController(id=1, host="192.0.2.10")
    async with await ZenClient.create() as client:
        resp = await client.send_request(controller, 0xAA, [0x01, 0x00, 0x00, 0x00])
        print("Resp:", resp.response_type, resp.data)

asyncio.run(main())
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional, Self, Tuple

from .admission import ZenAdmission, ZenSequenceAllocator
from .frame import Response, build_request, parse_response, format_bytes, MIN_RESPONSE_LENGTH, MAGIC
from ..exceptions import ZenError, ZenTimeoutError, ZenResponseError, ZenConnectionError

if TYPE_CHECKING:
    from ..api.models import ZenController


# Constants
class ClientConst:
    """Constants for the ZenClient"""
    MAGIC = MAGIC
    DEFAULT_TIMEOUT = 1.0  # In rare circumstances 0.5 seconds is too short
    MIN_TIMEOUT = 0.01
    MAX_TIMEOUT = 10.0
    DEFAULT_MAX_RETRIES = 5
    DEFAULT_MAX_REQUESTS_PER_CONTROLLER = 8


@dataclass
class PendingRequest:
    """A request that has been sent and is waiting for its response"""
    seq: int
    controller: "ZenController"
    command: int
    frame: bytes
    future: asyncio.Future
    retries: int = 0
    timer: Optional[asyncio.TimerHandle] = None
    timestamp: float = field(default_factory=time.time)


# Protocol classes
class ZenRequestProtocol(asyncio.DatagramProtocol):
    def __init__(self, response_handler, logger: Optional[logging.Logger] = None):
        self.response_handler = response_handler
        self.logger = logger or logging.getLogger(__name__)
        self.transport: Optional[asyncio.transports.DatagramTransport] = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.response_handler(data, addr)

    def error_received(self, exc):
        self.logger.error(f"Request protocol error: {exc}")

    def connection_lost(self, exc):
        if exc:
            self.logger.error(f"Request connection lost: {exc}")
        else:
            self.logger.info("Request connection closed")


class ZenClient:
    """
    One socket, many controllers.
      - seq is 1 byte (0..255), unique among all pending requests, reused for retries
      - at most max_requests_per_controller requests are in flight per controller
      - a request that isn't answered within response_timeout is resent, up to max_retries times
    """

    def __init__(self,
                 response_timeout: float = ClientConst.DEFAULT_TIMEOUT,
                 max_retries: int = ClientConst.DEFAULT_MAX_RETRIES,
                 max_requests_per_controller: int = ClientConst.DEFAULT_MAX_REQUESTS_PER_CONTROLLER,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.response_timeout = max(ClientConst.MIN_TIMEOUT, min(response_timeout, ClientConst.MAX_TIMEOUT))
        self.max_retries = max(0, max_retries)
        self._transport: Optional[asyncio.transports.DatagramTransport] = None
        self._pending: Dict[int, PendingRequest] = {}
        self._admission = ZenAdmission(max_requests_per_controller)
        self._sequences = ZenSequenceAllocator(self._pending.__contains__, self.logger)
        self._closed = False

    @classmethod
    async def create(cls,
                     response_timeout: float = ClientConst.DEFAULT_TIMEOUT,
                     max_retries: int = ClientConst.DEFAULT_MAX_RETRIES,
                     max_requests_per_controller: int = ClientConst.DEFAULT_MAX_REQUESTS_PER_CONTROLLER,
                     logger: Optional[logging.Logger] = None) -> Self:
        self = cls(response_timeout, max_retries, max_requests_per_controller, logger)
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: ZenRequestProtocol(self._receive_response, self.logger),
            local_addr=("0.0.0.0", 0),  # Unconnected, shared by every controller
        )
        self._transport = transport
        self.logger.info(f"Command socket open on port {transport.get_extra_info('sockname')[1]}")
        return self

    @property
    def admission(self) -> ZenAdmission:
        return self._admission

    async def send_request(self, controller: "ZenController", command: int, data: bytes | list[int]) -> Response:
        """Send a request and wait for its response. Raises ZenError subclasses on failure."""
        if self._closed: raise ZenConnectionError("Client is closed")

        # Wait for a free slot on this controller
        await self._admission.admit(controller.id)

        # Allocate a sequence number
        try:
            seq = await self._sequences.allocate()
        except BaseException:
            self._admission.release(controller.id)
            raise

        # Register the pending request
        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            seq=seq,
            controller=controller,
            command=command,
            frame=build_request(seq, command, data),
            future=loop.create_future(),
        )
        self._pending[seq] = pending

        self._transmit(pending)

        try:
            return await pending.future
        except asyncio.CancelledError:
            if self._pending.get(seq) is pending:
                self._finish(pending)
            raise

    def _transmit(self, pending: PendingRequest):
        """Send (or resend) the frame and arm the response timer"""
        try:
            if self._transport is None or self._transport.is_closing():
                raise ZenConnectionError("Transport is not open")
            pending.timestamp = time.time()
            self._transport.sendto(pending.frame, (pending.controller.host, pending.controller.port))
        except (OSError, ZenConnectionError) as e:
            self.logger.warning(f"Failed to send message to {pending.controller.host}:{pending.controller.port}: {e}")
            self._fail(pending, e if isinstance(e, ZenError) else ZenConnectionError(str(e)))
            return
        self.logger.debug(f"Sent to {pending.controller.host}:{pending.controller.port}: {format_bytes(pending.frame)}")
        pending.timer = asyncio.get_running_loop().call_later(self.response_timeout, self._on_timeout, pending)

    def _on_timeout(self, pending: PendingRequest):
        if self._pending.get(pending.seq) is not pending:
            return
        if pending.retries < self.max_retries:
            pending.retries += 1
            self.logger.debug(f"No response from {pending.controller.host}:{pending.controller.port} for seq {pending.seq}, retry {pending.retries}")
            self._transmit(pending)
            return
        self.logger.error(f"Failed to send message to {pending.controller.host}:{pending.controller.port}: too many retries ({pending.retries}) {format_bytes(pending.frame)}")
        self._fail(pending, ZenTimeoutError(f"No response from {pending.controller.host}:{pending.controller.port} after {pending.retries + 1} attempts"))

    def _finish(self, pending: PendingRequest):
        """Drop the pending entry, stop its timer and free its admission slot"""
        self._pending.pop(pending.seq, None)
        if pending.timer:
            pending.timer.cancel()
            pending.timer = None
        self._admission.release(pending.controller.id)

    def _fail(self, pending: PendingRequest, exc: Exception):
        self._finish(pending)
        if not pending.future.done():
            pending.future.set_exception(exc)

    def _receive_response(self, datagram: bytes, addr: Tuple[str, int]):

        # Too short to even carry a sequence number
        if len(datagram) < MIN_RESPONSE_LENGTH:
            self.logger.warning(f"Received invalid message: too short from {addr[0]}:{addr[1]} {format_bytes(datagram)}")
            return

        # Find the pending request
        pending = self._pending.get(datagram[1])
        if pending is None:
            self.logger.warning(f"Received message with unknown sequence number ({datagram[1]}) from {addr[0]}:{addr[1]}")
            return

        self._finish(pending)

        try:
            response = parse_response(datagram, addr)
        except ZenResponseError as e:
            # The controller did answer, so don't resend: the command may already have run
            self.logger.warning(f"Invalid response from {addr[0]}:{addr[1]}: {e} {format_bytes(datagram)}")
            if not pending.future.done():
                pending.future.set_exception(e)
            return

        self.logger.debug(f"Received from {addr[0]}:{addr[1]}: {format_bytes(datagram)} ({(response.timestamp - pending.timestamp) * 1000:.0f}ms)")
        if not pending.future.done():
            pending.future.set_result(response)

    def pending_count(self) -> int:
        return len(self._pending)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def is_connected(self) -> bool:
        """Check if client is connected"""
        return self._transport is not None and not self._transport.is_closing() and not self._closed

    async def close(self):
        """Close the client, failing anything still pending"""
        self._closed = True
        for pending in list(self._pending.values()):
            self._fail(pending, ZenConnectionError("Client closed"))
        if self._transport:
            self._transport.close()
            self._transport = None
