"""Protocol constants for SOCKS5 (RFC 1928) and username/password auth (RFC 1929)."""

from __future__ import annotations

from enum import Enum, IntEnum

SOCKS_VERSION = 0x05
USERPASS_VERSION = 0x01
RSV = 0x00
UDP_RSV = b"\x00\x00"
UDP_FRAG = 0x00
AUTH_GRANTED = 0x00
DEFAULT_PORT = 1080


class AuthMethod(IntEnum):
    NO_AUTH = 0x00
    USERNAME_PASSWORD = 0x02
    NO_ACCEPTABLE = 0xFF


class Command(IntEnum):
    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03


class AddressType(IntEnum):
    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class ReplyStatus(IntEnum):
    GRANTED = 0x00
    GENERAL_FAILURE = 0x01
    NOT_ALLOWED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08

    @property
    def text(self) -> str:
        return STATUS_TEXT[self]


class ConnectionState(Enum):
    INITIAL = "initial"
    GREETING_SENT = "greeting_sent"
    AUTHENTICATION_SENT = "authentication_sent"
    REQUEST_SENT = "request_sent"
    ESTABLISHED = "established"
    FAILED = "failed"


STATUS_TEXT = {
    ReplyStatus.GRANTED: "request granted",
    ReplyStatus.GENERAL_FAILURE: "general failure",
    ReplyStatus.NOT_ALLOWED: "connection not allowed by ruleset",
    ReplyStatus.NETWORK_UNREACHABLE: "network unreachable",
    ReplyStatus.HOST_UNREACHABLE: "host unreachable",
    ReplyStatus.CONNECTION_REFUSED: "connection refused by destination host",
    ReplyStatus.TTL_EXPIRED: "TTL expired",
    ReplyStatus.COMMAND_NOT_SUPPORTED: "command not supported / protocol error",
    ReplyStatus.ADDRESS_TYPE_NOT_SUPPORTED: "address type not supported",
}

DEFAULT_METHODS = (AuthMethod.NO_AUTH, AuthMethod.USERNAME_PASSWORD)
