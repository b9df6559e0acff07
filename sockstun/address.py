"""
Encoding and decoding of the SOCKS5 address field (ATYP + ADDR).

The same layout is used by connection requests, connection replies and
UDP datagram headers:

          ATYP  ADDR
    ----------------------
    Bytes  1    variable

    IPv4    4 bytes
    domain  1 byte of name length followed by 1-255 bytes
    IPv6   16 bytes
"""

from __future__ import annotations

import ipaddress
from typing import NamedTuple

from .constants import AddressType
from .errors import AddressTooLong, InvalidAddressFormat, InvalidAddressType

_FIXED_LENGTHS = {
    AddressType.IPV4: 4,
    AddressType.IPV6: 16,
}
_FAMILIES = {
    AddressType.IPV4: 4,
    AddressType.IPV6: 6,
}


class AddressSpec(NamedTuple):
    """A tagged SOCKS address; ``host`` is the textual form."""

    atyp: AddressType
    host: str

    @property
    def family(self) -> int | None:
        # Informational only: 4, 6, or None for domain names.
        return _FAMILIES.get(self.atyp)

    @property
    def is_unspecified(self) -> bool:
        if self.atyp == AddressType.DOMAIN:
            return False
        return ipaddress.ip_address(self.host).is_unspecified

    def __str__(self) -> str:
        return self.host

    @classmethod
    def from_host(cls, hostname: str) -> AddressSpec:
        """Classify ``hostname`` as an IPv4 literal, IPv6 literal or domain name."""
        if ":" in hostname:
            # Zone suffix ("fe80::1%eth0") is not representable on the wire.
            literal = hostname.split("%", 1)[0]
            try:
                addr = ipaddress.IPv6Address(literal)
            except ValueError as exc:
                raise InvalidAddressFormat(f"Invalid IPv6 address: {hostname!r}") from exc
            return cls(AddressType.IPV6, str(addr))
        try:
            addr4 = ipaddress.IPv4Address(hostname)
        except ValueError:
            return cls(AddressType.DOMAIN, hostname)
        return cls(AddressType.IPV4, str(addr4))


def fixed_address_length(atyp: int) -> int | None:
    """
    Return the ADDR length for a fixed-width ATYP, or None for a domain name
    (whose length is carried in the first ADDR byte).
    """
    if atyp == AddressType.DOMAIN:
        return None
    try:
        return _FIXED_LENGTHS[AddressType(atyp)]
    except (ValueError, KeyError):
        raise InvalidAddressType(atyp) from None


def encode_address(hostname: str | AddressSpec) -> bytes:
    """Encode a hostname into ATYP + ADDR bytes."""
    spec = hostname if isinstance(hostname, AddressSpec) else AddressSpec.from_host(hostname)
    if spec.atyp == AddressType.IPV4:
        return bytes([AddressType.IPV4]) + ipaddress.IPv4Address(spec.host).packed
    if spec.atyp == AddressType.IPV6:
        return bytes([AddressType.IPV6]) + ipaddress.IPv6Address(spec.host).packed
    name = spec.host.encode("utf-8")
    if not name:
        raise InvalidAddressFormat("Domain name must not be empty")
    if len(name) > 255:
        raise AddressTooLong(f"Domain name is {len(name)} bytes, limit is 255")
    return bytes([AddressType.DOMAIN, len(name)]) + name


def read_address(data: bytes, offset: int = 0) -> tuple[AddressSpec, int]:
    """
    Decode the address field starting at ``offset``.

    Returns the address and the offset just past it.
    """
    if len(data) <= offset:
        raise ValueError("Truncated address: missing address type")
    atyp = data[offset]
    start = offset + 1
    size = fixed_address_length(atyp)
    if size is None:
        if len(data) <= start:
            raise ValueError("Truncated domain name length")
        size = data[start]
        start += 1
    end = start + size
    raw = bytes(data[start:end])
    if len(raw) != size:
        raise ValueError(f"Truncated address: expected {size} bytes, got {len(raw)}")
    if atyp == AddressType.IPV4:
        return AddressSpec(AddressType.IPV4, str(ipaddress.IPv4Address(raw))), end
    if atyp == AddressType.IPV6:
        return AddressSpec(AddressType.IPV6, str(ipaddress.IPv6Address(raw))), end
    return AddressSpec(AddressType.DOMAIN, raw.decode("utf-8", errors="replace")), end


def decode_address(data: bytes) -> tuple[AddressSpec, int | None]:
    """Decode a complete ATYP + ADDR field; returns (address, family hint)."""
    spec, _ = read_address(data)
    return spec, spec.family
