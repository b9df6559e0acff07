from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from .address import fixed_address_length
from .constants import DEFAULT_METHODS, SOCKS_VERSION, Command, ConnectionState
from .errors import ChannelFailure, InvalidStateError, SocksError
from .packets import BoundEndpoint, Credentials
from .proxy import default_proxy_url, parse_proxy_url
from .relay import AsyncUDPRelay
from .state import HandshakeStateMachine

logger = logging.getLogger(__name__)


class AsyncSocks5Stream:
    """
    SOCKS5 client over asyncio streams.

    Each reply is awaited with ``readexactly`` so a reply is only ever
    consumed in the state that solicited it. Once a CONNECT or BIND is
    established, ``reader``/``writer`` carry the tunneled stream untouched.

    Args:
        reader: StreamReader connected to the proxy.
        writer: StreamWriter connected to the proxy.
        methods: Authentication methods to offer.
        credentials: Default (username, password) used if the proxy asks for them.
        proxy_host: Proxy hostname, used to reach an unspecified UDP relay address.
        timeout: Seconds to wait for each reply; None waits forever.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        methods: Iterable[int] = DEFAULT_METHODS,
        credentials: tuple[str | bytes, str | bytes | None] | None = None,
        proxy_host: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.proxy_host = proxy_host
        self.timeout = timeout
        self.credentials = credentials
        self.machine = HandshakeStateMachine(methods)
        self.udp_relay: AsyncUDPRelay | None = None

    @classmethod
    async def connect(
        cls,
        proxy: str | None = None,
        timeout: float | None = 10.0,
        methods: Iterable[int] = DEFAULT_METHODS,
    ) -> AsyncSocks5Stream:
        """Open a TCP control channel to ``proxy`` (default: $SOCKS_PROXY)."""
        host, port, username, password = parse_proxy_url(proxy or default_proxy_url())
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise ChannelFailure(f"Could not connect to SOCKS5 proxy {host}:{port}: {exc}") from exc
        credentials = (username, password) if username is not None else None
        return cls(reader, writer, methods=methods, credentials=credentials, proxy_host=host, timeout=timeout)

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    @property
    def bound(self) -> BoundEndpoint | None:
        return self.machine.bound

    async def establish(
        self,
        host: str,
        port: int,
        command: int = Command.CONNECT,
        credentials: tuple[str | bytes, str | bytes | None] | None = None,
    ) -> BoundEndpoint:
        """Run the handshake and return the endpoint the proxy bound for us."""
        creds = credentials or self.credentials
        auth = Credentials.create(*creds) if creds is not None else None
        machine = self.machine
        greeting = machine.start(host, port, command, auth)
        logger.debug("SOCKS5 %s to %s:%d via %s", machine.command.name, host, port, self.proxy_host or "proxy")
        try:
            await self._send(greeting)
            auth_request = machine.receive_handshake_reply(await self._read(2))
            if auth_request is not None:
                await self._send(auth_request)
                machine.receive_auth_reply(await self._read(2))
            await self._send(machine.send_request())
            return machine.receive_connection_reply(await self._read_connection_reply())
        except (SocksError, ValueError):
            machine.fail()
            raise
        except asyncio.IncompleteReadError as exc:
            machine.fail()
            raise ChannelFailure(
                f"SOCKS5 proxy closed the connection ({len(exc.partial)} of {exc.expected} bytes read)"
            ) from exc
        except (OSError, asyncio.TimeoutError) as exc:
            machine.fail()
            raise ChannelFailure(f"SOCKS5 control channel failed: {exc!r}") from exc
        except asyncio.CancelledError:
            machine.fail()
            raise

    async def _send(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def _read(self, n: int) -> bytes:
        return await asyncio.wait_for(self.reader.readexactly(n), self.timeout)

    async def _read_connection_reply(self) -> bytes:
        header = await self._read(4)
        if header[0] != SOCKS_VERSION:
            return header
        size = fixed_address_length(header[3])
        if size is None:
            length = await self._read(1)
            return header + length + await self._read(length[0] + 2)
        return header + await self._read(size + 2)

    def get_bind_address(self) -> dict | None:
        bound = self.machine.bound
        if bound is None:
            return None
        return {"address": bound.host, "family": bound.address.family, "port": bound.port}

    async def open_udp_relay(self, local_addr: tuple[str, int] | None = None) -> AsyncUDPRelay:
        """Relay for the granted UDP association; created once per control channel."""
        if not self.machine.established or self.machine.command is not Command.UDP_ASSOCIATE:
            raise InvalidStateError("UDP relay requires an established UDP_ASSOCIATE")
        if self.udp_relay is None:
            assert self.machine.bound is not None
            self.udp_relay = await AsyncUDPRelay.open(self.machine.bound, self.proxy_host, local_addr)
        return self.udp_relay

    async def close(self) -> None:
        if self.udp_relay is not None:
            self.udp_relay.close()
            self.udp_relay = None
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError:
            # Peer may already have reset the channel.
            pass

    async def __aenter__(self) -> AsyncSocks5Stream:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
