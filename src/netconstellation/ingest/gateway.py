"""
Gateway detection.

Reads the host routing table (Linux /proc/net/route, or any object that
implements RoutingTableSource) to find gateway addresses, matches them
against discovered devices, and falls back to a traffic-pattern heuristic
when the routing table is unavailable or matches nothing.
"""

import ipaddress
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from ..models.addressing import MalformedRecordError, validate_ip
from ..models.entities import Connection, Device

logger = logging.getLogger(__name__)

ROLE_DEFAULT = "Default"
ROLE_SECONDARY = "Secondary"
ROLE_INFERRED = "Default (Inferred)"

# RTF_UP | RTF_GATEWAY from linux/route.h
_RTF_UP = 0x0001
_RTF_GATEWAY = 0x0002


@dataclass
class Route:
    """A routing table entry that goes through a gateway."""
    gateway: str
    network: str
    netmask: str
    interface: str = ""
    metric: int = 0

    @property
    def prefix_len(self) -> int:
        return ipaddress.IPv4Network(f"0.0.0.0/{self.netmask}").prefixlen

    @property
    def cidr(self) -> str:
        return f"{self.network}/{self.prefix_len}"

    @property
    def is_default(self) -> bool:
        return self.network == "0.0.0.0" and self.netmask == "0.0.0.0"


@dataclass
class GatewayMatch:
    """A device identified as a gateway."""
    key: str
    ip: str
    is_default: bool
    role: str


class RoutingTableSource(Protocol):
    """Host routing table collaborator."""

    def default_gateway(self) -> Optional[str]:
        ...

    def routes(self) -> list[Route]:
        ...


def _hex_to_ip(value: str) -> str:
    """Decode a little-endian hex IPv4 address as found in /proc/net/route."""
    return str(ipaddress.IPv4Address(int.from_bytes(bytes.fromhex(value), "little")))


def parse_proc_net_route(text: str) -> list[Route]:
    """Parse /proc/net/route into gateway routes.

    Only entries that are up and flagged RTF_GATEWAY with a non-zero gateway
    are returned. Unparseable lines are skipped.
    """
    routes = []
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 8:
            continue
        iface, dest, gw, flags, _, _, metric, mask = fields[:8]
        try:
            flag_bits = int(flags, 16)
            if not (flag_bits & _RTF_UP and flag_bits & _RTF_GATEWAY):
                continue
            if int(gw, 16) == 0:
                continue
            routes.append(Route(
                gateway=_hex_to_ip(gw),
                network=_hex_to_ip(dest),
                netmask=_hex_to_ip(mask),
                interface=iface,
                metric=int(metric),
            ))
        except ValueError:
            logger.debug("Skipping unparseable route line: %r", line)
    return routes


def _default_of(routes: list[Route]) -> Optional[str]:
    defaults = [r for r in routes if r.is_default]
    if not defaults:
        return None
    return min(defaults, key=lambda r: r.metric).gateway


class ProcNetRouteSource:
    """RoutingTableSource backed by the Linux /proc/net/route file."""

    def __init__(self, path: str = "/proc/net/route"):
        self.path = path

    def routes(self) -> list[Route]:
        try:
            with open(self.path) as f:
                text = f.read()
        except OSError as exc:
            logger.warning("Cannot read routing table %s: %s", self.path, exc)
            return []
        return parse_proc_net_route(text)

    def default_gateway(self) -> Optional[str]:
        return _default_of(self.routes())


class StaticRoutingTable:
    """Fixed routing table, for tests and platforms without /proc."""

    def __init__(self, routes: Iterable[Route] = (), default: Optional[str] = None):
        self._routes = list(routes)
        self._default = default

    def routes(self) -> list[Route]:
        return list(self._routes)

    def default_gateway(self) -> Optional[str]:
        if self._default is not None:
            return self._default
        return _default_of(self._routes)


def _canonical_ip(ip: str) -> Optional[str]:
    try:
        return validate_ip(ip)
    except MalformedRecordError:
        return None


class GatewayDetector:
    """
    Flags gateway devices.

    Stateless per call: every method re-reads the routing source. Source
    failures are logged and treated as "no gateway known".
    """

    def __init__(self, source: Optional[RoutingTableSource] = None):
        self.source = source if source is not None else ProcNetRouteSource()

    def detect_default_gateway(self) -> Optional[str]:
        try:
            gateway = self.source.default_gateway()
        except Exception:
            logger.warning("Default gateway lookup failed", exc_info=True)
            return None
        if not gateway:
            logger.warning("Could not detect default gateway from routing table")
            return None
        canonical = _canonical_ip(gateway)
        if canonical is None:
            logger.warning("Routing table returned malformed gateway %r", gateway)
            return None
        logger.info("Detected default gateway %s", canonical)
        return canonical

    def get_routing_table(self) -> list[Route]:
        try:
            routes = list(self.source.routes())
        except Exception:
            logger.error("Failed to read routing table", exc_info=True)
            return []
        logger.debug("Found %d routes in routing table", len(routes))
        return routes

    def identify_gateway_devices(
        self,
        devices: list[Device],
        connections: Iterable[Connection] = (),
    ) -> list[GatewayMatch]:
        """Flag devices whose IP is a routing-table gateway.

        The passed Device objects are updated in place and the matches are
        returned so a store can apply them. With no match the traffic
        heuristic picks at most one inferred default gateway.
        """
        default = self.detect_default_gateway()
        gateway_ips = {
            ip for ip in (_canonical_ip(r.gateway) for r in self.get_routing_table())
            if ip is not None
        }
        if default is not None:
            gateway_ips.add(default)

        matches = []
        for device in devices:
            if device.is_virtual or not device.ip:
                continue
            ip = _canonical_ip(device.ip)
            if ip is None or ip not in gateway_ips:
                continue
            is_default = ip == default
            role = ROLE_DEFAULT if is_default else ROLE_SECONDARY
            device.is_gateway = True
            device.is_default_gateway = is_default
            device.gateway_role = role
            matches.append(GatewayMatch(device.key, device.ip, is_default, role))
            logger.info("Marked device %s (%s) as %s gateway", device.ip, device.key, role.lower())

        if not matches:
            logger.warning("No gateway devices found among %d devices", len(devices))
            inferred = self.infer_gateway_from_arp_patterns(devices, connections)
            if inferred is not None:
                inferred.is_gateway = True
                inferred.is_default_gateway = True
                inferred.gateway_role = ROLE_INFERRED
                matches.append(GatewayMatch(inferred.key, inferred.ip, True, ROLE_INFERRED))
                logger.info("Inferred gateway from traffic patterns: %s", inferred.ip)

        return matches

    def infer_gateway_from_arp_patterns(
        self,
        devices: list[Device],
        connections: Iterable[Connection],
    ) -> Optional[Device]:
        """The local device touched by the most distinct other devices.

        Ties go to the earliest device in ``devices``. Returns None when no
        candidate has any traffic.
        """
        touched: dict[str, set] = defaultdict(set)
        for conn in connections:
            src, dst = conn.source.key, conn.destination.key
            if src == dst:
                continue
            touched[src].add(dst)
            touched[dst].add(src)

        best = None
        best_count = 0
        for device in devices:
            if device.is_virtual or not device.is_local:
                continue
            count = len(touched.get(device.key, ()))
            if count > best_count:
                best, best_count = device, count
        return best

    def refresh_gateways(
        self,
        devices: list[Device],
        connections: Iterable[Connection] = (),
    ) -> list[GatewayMatch]:
        """Clear gateway flags on ``devices`` and identify them again."""
        logger.info("Refreshing gateway information")
        for device in devices:
            device.is_gateway = False
            device.is_default_gateway = False
            device.gateway_role = None
        matches = self.identify_gateway_devices(devices, list(connections))
        logger.info("Gateway refresh complete: %d gateway(s) identified", len(matches))
        return matches
