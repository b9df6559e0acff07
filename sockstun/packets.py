"""
SOCKS5 message builders (client to server) and reply parsers (server to client).

All multi-byte integers are big-endian. Builders validate every length limit
before producing any bytes, so a failed build never yields a partial message.
"""

from __future__ import annotations

import struct
from collections.abc import Iterable
from typing import NamedTuple

from .address import AddressSpec, encode_address, read_address
from .constants import (
    DEFAULT_METHODS,
    RSV,
    SOCKS_VERSION,
    UDP_FRAG,
    UDP_RSV,
    USERPASS_VERSION,
    AuthMethod,
    Command,
    ReplyStatus,
)
from .errors import CredentialTooLong, ProtocolVersionMismatch


class Credentials(NamedTuple):
    username: bytes
    password: bytes

    @classmethod
    def create(cls, username: str | bytes, password: str | bytes | None) -> Credentials:
        if isinstance(username, str):
            username = username.encode("utf-8")
        if password is None:
            password = b""
        elif isinstance(password, str):
            password = password.encode("utf-8")
        return cls(username, password)

    def __repr__(self) -> str:
        # Never echo the password into logs or tracebacks.
        return f"Credentials(username={self.username!r}, password=<hidden>)"


class BoundEndpoint(NamedTuple):
    address: AddressSpec
    port: int

    @property
    def host(self) -> str:
        return self.address.host

    def as_tuple(self) -> tuple[str, int]:
        return self.address.host, self.port


class HandshakeReply(NamedTuple):
    version: int
    method: int


class AuthReply(NamedTuple):
    version: int
    status: int


class ConnectionReply(NamedTuple):
    version: int
    status: ReplyStatus | int
    bound: BoundEndpoint


class Datagram(NamedTuple):
    data: bytes
    address: AddressSpec
    port: int
    frag: int = 0

    @property
    def host(self) -> str:
        return self.address.host


def _pack_port(port: int) -> bytes:
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"Port out of range: {port}")
    return struct.pack("!H", port)


def build_greeting(methods: Iterable[int] = DEFAULT_METHODS) -> bytes:
    """
    Client greeting.

              VER  NMETHODS  METHODS
    ---------------------------------
    Bytes     1    1         1-255
    """
    codes = [int(m) for m in methods]
    if not 1 <= len(codes) <= 255:
        raise ValueError("Greeting must offer between 1 and 255 methods")
    return bytes([SOCKS_VERSION, len(codes), *codes])


def build_auth_request(username: str | bytes, password: str | bytes | None = None) -> bytes:
    """
    Username/password authentication request (RFC 1929).

             VER  ULEN  UNAME   PLEN  PASSWD
    -----------------------------------------
    Bytes    1    1     1-255   1     1-255
    """
    creds = Credentials.create(username, password)
    if len(creds.username) > 255:
        raise CredentialTooLong(f"Username is {len(creds.username)} bytes, limit is 255")
    if len(creds.password) > 255:
        raise CredentialTooLong(f"Password is {len(creds.password)} bytes, limit is 255")
    return (
        bytes([USERPASS_VERSION, len(creds.username)])
        + creds.username
        + bytes([len(creds.password)])
        + creds.password
    )


def build_request(hostname: str | AddressSpec, port: int, command: int = Command.CONNECT) -> bytes:
    """
    Connection request.

             VER  CMD  RSV  ATYP  ADDR      PORT
    ---------------------------------------------
    Bytes    1    1    1    1     variable  2
    """
    address = encode_address(hostname)
    return bytes([SOCKS_VERSION, int(command), RSV]) + address + _pack_port(port)


def build_udp_header(hostname: str | AddressSpec, port: int) -> bytes:
    """
    UDP request header, prepended to every relayed datagram.

             RSV  FRAG  ATYP  ADDR      PORT  DATA
    -----------------------------------------------
    Bytes    2    1     1     variable  2     rest
    """
    address = encode_address(hostname)
    return UDP_RSV + bytes([UDP_FRAG]) + address + _pack_port(port)


def build_udp_datagram(payload: bytes, hostname: str | AddressSpec, port: int) -> bytes:
    return build_udp_header(hostname, port) + bytes(payload)


def parse_handshake_reply(data: bytes) -> HandshakeReply:
    if len(data) != 2:
        raise ValueError(f"Handshake reply must be 2 bytes, got {len(data)}")
    if data[0] != SOCKS_VERSION:
        raise ProtocolVersionMismatch(SOCKS_VERSION, data[0])
    return HandshakeReply(data[0], data[1])


def parse_auth_reply(data: bytes) -> AuthReply:
    if len(data) != 2:
        raise ValueError(f"Authentication reply must be 2 bytes, got {len(data)}")
    if data[0] != USERPASS_VERSION:
        raise ProtocolVersionMismatch(USERPASS_VERSION, data[0])
    return AuthReply(data[0], data[1])


def parse_connection_reply(data: bytes) -> ConnectionReply:
    """
    Connection reply.

             VER  REP  RSV  ATYP  BND.ADDR  BND.PORT
    -------------------------------------------------
    Bytes    1    1    1    1     variable  2
    """
    if len(data) < 4:
        raise ValueError(f"Connection reply too short: {len(data)} bytes")
    if data[0] != SOCKS_VERSION:
        raise ProtocolVersionMismatch(SOCKS_VERSION, data[0])
    address, offset = read_address(data, 3)
    if len(data) != offset + 2:
        raise ValueError("Connection reply length does not match its address field")
    (port,) = struct.unpack_from("!H", data, offset)
    try:
        status: ReplyStatus | int = ReplyStatus(data[1])
    except ValueError:
        status = data[1]
    return ConnectionReply(data[0], status, BoundEndpoint(address, port))


def parse_udp_datagram(data: bytes) -> Datagram:
    """Strip the UDP header from a relayed datagram; DATA is everything after the port."""
    if len(data) < 4:
        raise ValueError(f"UDP datagram too short: {len(data)} bytes")
    frag = data[2]
    address, offset = read_address(data, 3)
    if len(data) < offset + 2:
        raise ValueError("UDP datagram truncated before port")
    (port,) = struct.unpack_from("!H", data, offset)
    return Datagram(bytes(data[offset + 2:]), address, port, frag)


def is_offerable(method: int) -> bool:
    return method in (AuthMethod.NO_AUTH, AuthMethod.USERNAME_PASSWORD)
