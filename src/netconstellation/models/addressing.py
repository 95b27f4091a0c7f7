"""
Address helpers for discovery records.

Normalizes MAC addresses, validates IPv4/IPv6 strings, and classifies
addresses into local (loopback, link-local, RFC 1918) and utility ranges
(broadcast, multicast, reserved) the capture layer should ignore.
"""

import ipaddress
import re
from typing import Optional


class MalformedRecordError(ValueError):
    """A discovery record carried an unparseable MAC or IP address."""

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"malformed {field}: {value!r}")


_MAC_HEX = re.compile(r"^[0-9a-f]{12}$")

_RFC1918 = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)
_LOOPBACK = ipaddress.ip_network("127.0.0.0/8")
_LINK_LOCAL = ipaddress.ip_network("169.254.0.0/16")
_MULTICAST = ipaddress.ip_network("224.0.0.0/4")
_BROADCAST = ipaddress.ip_address("255.255.255.255")


def normalize_mac(mac: str) -> str:
    """Return ``mac`` as lower-case colon-separated hex.

    Accepts colon, hyphen, dot (Cisco) or bare notations. Raises
    MalformedRecordError for anything that is not 48 bits of hex.
    """
    if not isinstance(mac, str):
        raise MalformedRecordError("mac", mac)
    digits = mac.strip().lower().replace(":", "").replace("-", "").replace(".", "")
    if not _MAC_HEX.match(digits):
        raise MalformedRecordError("mac", mac)
    return ":".join(digits[i:i + 2] for i in range(0, 12, 2))


def validate_ip(ip: str) -> str:
    """Return the canonical text form of ``ip`` or raise MalformedRecordError."""
    if not isinstance(ip, str) or not ip.strip():
        raise MalformedRecordError("ip", ip)
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError:
        raise MalformedRecordError("ip", ip) from None


def _ipv4(ip: str) -> Optional[ipaddress.IPv4Address]:
    try:
        addr = ipaddress.ip_address(ip)
    except (ValueError, TypeError):
        return None
    if addr.version != 4:
        return None
    return addr


def is_loopback(ip: str) -> bool:
    addr = _ipv4(ip)
    return addr is not None and addr in _LOOPBACK


def is_link_local(ip: str) -> bool:
    addr = _ipv4(ip)
    return addr is not None and addr in _LINK_LOCAL


def is_private(ip: str) -> bool:
    addr = _ipv4(ip)
    return addr is not None and any(addr in net for net in _RFC1918)


def is_multicast(ip: str) -> bool:
    addr = _ipv4(ip)
    return addr is not None and addr in _MULTICAST


def is_broadcast(ip: str) -> bool:
    addr = _ipv4(ip)
    return addr is not None and addr == _BROADCAST


def is_reserved(ip: str) -> bool:
    """0.0.0.0/8 and 240.0.0.0/4, excluding the limited broadcast address."""
    addr = _ipv4(ip)
    if addr is None:
        return False
    first = addr.packed[0]
    return first == 0 or 240 <= first <= 254


def is_local_address(ip: str) -> bool:
    """Loopback, link-local or RFC 1918. IPv6 is never local here."""
    return is_loopback(ip) or is_link_local(ip) or is_private(ip)


def is_utility_address(
    ip: str,
    loopback: bool = True,
    broadcast: bool = True,
    multicast: bool = True,
    link_local: bool = True,
    reserved: bool = True,
) -> bool:
    """True if ``ip`` is a special-use address the capture layer filters."""
    if not ip or not ip.strip():
        return True
    if loopback and is_loopback(ip):
        return True
    if broadcast and is_broadcast(ip):
        return True
    if multicast and is_multicast(ip):
        return True
    if link_local and is_link_local(ip):
        return True
    if reserved and is_reserved(ip):
        return True
    return False


def is_utility_mac(mac: str) -> bool:
    """Broadcast, multicast (I/G bit set) and IANA 00:00:5e MACs, or garbage."""
    try:
        normalized = normalize_mac(mac)
    except MalformedRecordError:
        return True
    if normalized == "ff:ff:ff:ff:ff:ff":
        return True
    if normalized.startswith("00:00:5e"):
        return True
    return bool(int(normalized[:2], 16) & 0x01)


def filter_reason(ip: str) -> str:
    """Human-readable reason an address counts as utility."""
    if is_loopback(ip):
        return "Loopback address (127.x.x.x)"
    if is_broadcast(ip):
        return "Broadcast address (255.255.255.255)"
    if is_multicast(ip):
        return "Multicast address (224-239.x.x.x)"
    if is_link_local(ip):
        return "Link-local address (169.254.x.x)"
    if is_reserved(ip):
        return "Reserved address range"
    return "Unknown"
