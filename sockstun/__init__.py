from sockstun.constants import AuthMethod, Command, AddressType, ReplyStatus, ConnectionState
from sockstun.address import AddressSpec, encode_address, decode_address
from sockstun.packets import (
    BoundEndpoint,
    Credentials,
    Datagram,
    build_greeting,
    build_auth_request,
    build_request,
    build_udp_header,
    parse_handshake_reply,
    parse_auth_reply,
    parse_connection_reply,
    parse_udp_datagram,
)
from sockstun.state import HandshakeStateMachine
from sockstun.socks5 import Socks5Socket
from sockstun.asyncio_socks5 import AsyncSocks5Stream
from sockstun.relay import UDPRelay, AsyncUDPRelay
from sockstun.errors import (
    SocksError,
    InvalidStateError,
    ProtocolVersionMismatch,
    AuthenticationMethodRejected,
    UnsupportedAuthenticationMethod,
    AuthenticationFailed,
    RequestRejected,
    InvalidAddressType,
    InvalidAddressFormat,
    AddressTooLong,
    CredentialTooLong,
    ChannelFailure,
    FragmentedDatagram,
)

__all__ = [
    "AuthMethod",
    "Command",
    "AddressType",
    "ReplyStatus",
    "ConnectionState",
    "AddressSpec",
    "encode_address",
    "decode_address",
    "BoundEndpoint",
    "Credentials",
    "Datagram",
    "build_greeting",
    "build_auth_request",
    "build_request",
    "build_udp_header",
    "parse_handshake_reply",
    "parse_auth_reply",
    "parse_connection_reply",
    "parse_udp_datagram",
    "HandshakeStateMachine",
    "Socks5Socket",
    "AsyncSocks5Stream",
    "UDPRelay",
    "AsyncUDPRelay",
    "SocksError",
    "InvalidStateError",
    "ProtocolVersionMismatch",
    "AuthenticationMethodRejected",
    "UnsupportedAuthenticationMethod",
    "AuthenticationFailed",
    "RequestRejected",
    "InvalidAddressType",
    "InvalidAddressFormat",
    "AddressTooLong",
    "CredentialTooLong",
    "ChannelFailure",
    "FragmentedDatagram",
]
