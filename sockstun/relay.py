"""
UDP relay framing for an established UDP ASSOCIATE.

Every outgoing payload is wrapped in the SOCKS5 UDP header and sent to the
proxy's relay endpoint; every incoming datagram has the header stripped.
A relay belongs to exactly one association and must not outlive the control
channel that granted it.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable

from .errors import FragmentedDatagram, InvalidStateError, SocksError
from .packets import BoundEndpoint, Datagram, build_udp_datagram, parse_udp_datagram

logger = logging.getLogger(__name__)

MAX_DATAGRAM = 65535
MAX_QUEUED = 1024


def relay_address(bound: BoundEndpoint, proxy_host: str | None = None) -> tuple[str, int]:
    """
    Where to send relayed datagrams.

    Proxies commonly answer UDP ASSOCIATE with an unspecified address
    (0.0.0.0 or ::), meaning "the address you already reach me on".
    """
    if proxy_host and bound.address.is_unspecified:
        return proxy_host, bound.port
    return bound.as_tuple()


def unwrap(data: bytes) -> Datagram:
    """Strip the UDP header; raises for malformed headers and fragments."""
    datagram = parse_udp_datagram(data)
    if datagram.frag != 0:
        raise FragmentedDatagram(datagram.frag)
    return datagram


class UDPRelay:
    """
    Blocking UDP relay over a datagram socket.

    Args:
        bound: Relay endpoint granted by the proxy.
        sock: Datagram socket to use; one is created when omitted.
        proxy_host: Proxy host, used when the bound address is unspecified.
        timeout: Receive timeout in seconds.
    """

    def __init__(
        self,
        bound: BoundEndpoint,
        sock: socket.socket | None = None,
        proxy_host: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.bound = bound
        host, port = relay_address(bound, proxy_host)
        family, _, _, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
        self.relay_address = sockaddr
        if sock is None:
            sock = socket.socket(family, socket.SOCK_DGRAM)
        if timeout is not None:
            sock.settimeout(timeout)
        self.sock = sock
        self.closed = False

    def send(self, payload: bytes, host: str, port: int) -> int:
        if self.closed:
            raise InvalidStateError("UDP relay is closed")
        packet = build_udp_datagram(payload, host, port)
        return self.sock.sendto(packet, self.relay_address)

    def receive(self, bufsize: int = MAX_DATAGRAM) -> Datagram:
        """
        Wait for the next relayed datagram.

        Fragmented datagrams are dropped; a datagram with an unknown address
        type raises InvalidAddressType and is discarded.
        """
        if self.closed:
            raise InvalidStateError("UDP relay is closed")
        while True:
            data, _ = self.sock.recvfrom(bufsize)
            try:
                return unwrap(data)
            except FragmentedDatagram as exc:
                logger.warning("Dropping fragmented UDP datagram (FRAG=%d)", exc.frag)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.sock.close()

    def __enter__(self) -> UDPRelay:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class AsyncUDPRelay(asyncio.DatagramProtocol):
    """
    asyncio UDP relay.

    Inbound payloads go to the callback registered with ``on_receive``;
    without one they are queued for ``receive()``, up to ``max_queued``
    datagrams; further arrivals are dropped with a warning until the queue
    drains. Malformed datagrams are dropped with a warning and never surface
    as data.
    """

    def __init__(
        self,
        bound: BoundEndpoint,
        proxy_host: str | None = None,
        max_queued: int = MAX_QUEUED,
    ) -> None:
        self.bound = bound
        self.relay_address = relay_address(bound, proxy_host)
        self.transport: asyncio.DatagramTransport | None = None
        self._callback: Callable[[Datagram], None] | None = None
        self._queue: asyncio.Queue[Datagram] = asyncio.Queue(maxsize=max_queued)
        self._closed: asyncio.Future | None = None

    @classmethod
    async def open(
        cls,
        bound: BoundEndpoint,
        proxy_host: str | None = None,
        local_addr: tuple[str, int] | None = None,
        max_queued: int = MAX_QUEUED,
    ) -> AsyncUDPRelay:
        loop = asyncio.get_running_loop()
        relay = cls(bound, proxy_host, max_queued)
        relay._closed = loop.create_future()
        await loop.create_datagram_endpoint(
            lambda: relay,
            local_addr=local_addr,
            remote_addr=relay.relay_address,
        )
        return relay

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        try:
            datagram = unwrap(data)
        except (SocksError, ValueError) as exc:
            logger.warning("Dropping UDP datagram from %s: %s", addr, exc)
            return
        if self._callback is not None:
            self._callback(datagram)
            return
        try:
            self._queue.put_nowait(datagram)
        except asyncio.QueueFull:
            logger.warning("Dropping UDP datagram from %s: receive queue is full", addr)

    def error_received(self, exc: Exception) -> None:
        logger.debug("UDP relay error: %s", exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self.transport = None
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    def on_receive(self, callback: Callable[[Datagram], None]) -> None:
        self._callback = callback

    def send(self, payload: bytes, host: str, port: int) -> None:
        if self.transport is None:
            raise InvalidStateError("UDP relay is not open")
        self.transport.sendto(build_udp_datagram(payload, host, port))

    async def receive(self) -> Datagram:
        return await self._queue.get()

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()

    async def wait_closed(self) -> None:
        if self._closed is not None:
            await self._closed
