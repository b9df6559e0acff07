from __future__ import annotations

import logging
import socket
from collections.abc import Iterable

from .address import fixed_address_length
from .constants import DEFAULT_METHODS, SOCKS_VERSION, Command, ConnectionState
from .errors import ChannelFailure, InvalidStateError, SocksError
from .packets import BoundEndpoint, Credentials
from .proxy import default_proxy_url, parse_proxy_url
from .relay import UDPRelay
from .state import HandshakeStateMachine

logger = logging.getLogger(__name__)


class Socks5Socket:
    """
    Blocking SOCKS5 client over one connected control channel.

    After ``establish`` succeeds for CONNECT or BIND the channel is a plain
    byte pipe: use ``sendall``/``recv`` (or ``sock`` directly). After
    UDP_ASSOCIATE keep this object open for as long as the relay is in use.

    Args:
        sock: Socket already connected to the proxy.
        methods: Authentication methods to offer.
        credentials: Default (username, password) used if the proxy asks for them.
        proxy_host: Proxy hostname, used to reach an unspecified UDP relay address.
        timeout: Seconds to wait for each reply; None waits forever.
    """

    def __init__(
        self,
        sock: socket.socket,
        methods: Iterable[int] = DEFAULT_METHODS,
        credentials: tuple[str | bytes, str | bytes | None] | None = None,
        proxy_host: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.sock = sock
        self.proxy_host = proxy_host
        self.timeout = timeout
        self.credentials = credentials
        self.machine = HandshakeStateMachine(methods)
        self.udp_relay: UDPRelay | None = None

    @classmethod
    def connect(
        cls,
        proxy: str | None = None,
        timeout: float | None = 10.0,
        methods: Iterable[int] = DEFAULT_METHODS,
    ) -> Socks5Socket:
        """Open a TCP control channel to ``proxy`` (default: $SOCKS_PROXY)."""
        host, port, username, password = parse_proxy_url(proxy or default_proxy_url())
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise ChannelFailure(f"Could not connect to SOCKS5 proxy {host}:{port}: {exc}") from exc
        # Blocking once connected; ``timeout`` then only bounds handshake replies.
        sock.settimeout(None)
        credentials = (username, password) if username is not None else None
        return cls(sock, methods=methods, credentials=credentials, proxy_host=host, timeout=timeout)

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    @property
    def bound(self) -> BoundEndpoint | None:
        return self.machine.bound

    def establish(
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
        prev_timeout = self.sock.gettimeout()
        if self.timeout is not None:
            self.sock.settimeout(self.timeout)
        try:
            self._send(greeting)
            auth_request = machine.receive_handshake_reply(self._recv_exactly(2))
            if auth_request is not None:
                self._send(auth_request)
                machine.receive_auth_reply(self._recv_exactly(2))
            self._send(machine.send_request())
            return machine.receive_connection_reply(self._read_connection_reply())
        except (SocksError, ValueError):
            machine.fail()
            raise
        except OSError as exc:
            machine.fail()
            raise ChannelFailure(f"SOCKS5 control channel failed: {exc}") from exc
        finally:
            self.sock.settimeout(prev_timeout)

    def _send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def _recv_exactly(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.sock.recv(n - len(buf))
            if not chunk:
                raise ChannelFailure(f"SOCKS5 proxy closed the connection ({len(buf)} of {n} bytes read)")
            buf += chunk
        return bytes(buf)

    def _read_connection_reply(self) -> bytes:
        # VER REP RSV ATYP, then BND.ADDR sized by ATYP, then BND.PORT
        header = self._recv_exactly(4)
        if header[0] != SOCKS_VERSION:
            # rejected by the parser before the address is read
            return header
        size = fixed_address_length(header[3])
        if size is None:
            length = self._recv_exactly(1)
            return header + length + self._recv_exactly(length[0] + 2)
        return header + self._recv_exactly(size + 2)

    def get_bind_address(self) -> dict | None:
        bound = self.machine.bound
        if bound is None:
            return None
        return {"address": bound.host, "family": bound.address.family, "port": bound.port}

    def open_udp_relay(self, sock: socket.socket | None = None) -> UDPRelay:
        """Relay for the granted UDP association; created once per control channel."""
        if not self.machine.established or self.machine.command is not Command.UDP_ASSOCIATE:
            raise InvalidStateError("UDP relay requires an established UDP_ASSOCIATE")
        if self.udp_relay is None:
            assert self.machine.bound is not None
            self.udp_relay = UDPRelay(self.machine.bound, sock=sock, proxy_host=self.proxy_host, timeout=self.timeout)
        return self.udp_relay

    def sendall(self, data: bytes) -> None:
        self._require_stream()
        self.sock.sendall(data)

    def recv(self, bufsize: int) -> bytes:
        self._require_stream()
        return self.sock.recv(bufsize)

    def _require_stream(self) -> None:
        if not self.machine.established or self.machine.command is Command.UDP_ASSOCIATE:
            raise InvalidStateError("Stream I/O requires an established CONNECT or BIND")

    def close(self) -> None:
        if self.udp_relay is not None:
            self.udp_relay.close()
            self.udp_relay = None
        self.sock.close()

    def __enter__(self) -> Socks5Socket:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
