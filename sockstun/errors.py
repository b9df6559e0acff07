from __future__ import annotations

import builtins

from .constants import ReplyStatus, STATUS_TEXT


class SocksError(Exception):
    """Base error for sockstun."""


class InvalidStateError(SocksError):
    """Raised when an operation is attempted in the wrong connection state."""


class ProtocolVersionMismatch(SocksError):
    """Raised when a reply carries an unexpected VER byte."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Unexpected protocol version {actual:#04x} (expected {expected:#04x})")


class AuthenticationMethodRejected(SocksError):
    """Raised when the proxy accepts none of the offered auth methods."""


class UnsupportedAuthenticationMethod(SocksError):
    """Raised when the proxy selects a method the client did not offer or cannot perform."""

    def __init__(self, method: int) -> None:
        self.method = method
        super().__init__(f"Unsupported authentication method: {method:#04x}")


class AuthenticationFailed(SocksError):
    """Raised when username/password authentication is refused."""


class RequestRejected(SocksError):
    """Raised when the connection reply status is anything but granted."""

    def __init__(self, status: int) -> None:
        try:
            self.status: ReplyStatus | int = ReplyStatus(status)
            text = STATUS_TEXT[self.status]
        except ValueError:
            self.status = status
            text = f"unassigned reply code {status:#04x}"
        self.text = text
        super().__init__(f"SOCKS5 request rejected: {text}")


class InvalidAddressType(SocksError):
    """Raised when an ATYP byte is not IPv4, domain or IPv6."""

    def __init__(self, atyp: int | None) -> None:
        self.atyp = atyp
        super().__init__("invalid address type" if atyp is None else f"invalid address type: {atyp:#04x}")


class InvalidAddressFormat(SocksError, ValueError):
    """Raised when an address literal cannot be encoded."""


class AddressTooLong(SocksError, ValueError):
    """Raised when a domain name exceeds 255 bytes."""


class CredentialTooLong(SocksError, ValueError):
    """Raised when a username or password exceeds 255 bytes."""


class ChannelFailure(SocksError, builtins.ConnectionError):
    """Raised when the control channel errors, closes or times out mid-handshake."""


class FragmentedDatagram(SocksError, ValueError):
    """Raised for relayed UDP datagrams with a non-zero FRAG field."""

    def __init__(self, frag: int) -> None:
        self.frag = frag
        super().__init__(f"Fragmented datagram (FRAG={frag}) is not supported")
