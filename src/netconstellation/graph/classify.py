"""
Connection classification.

Address rules decide the connection type; TTL hop analysis only offers a
candidate that can refine a local (DIRECT_L2) link into ROUTED_L3 when
refinement is switched on. The INTERNET fallback for non-local, non-virtual
destinations is an approximation: some of those may be routed LAN hosts.
"""

from typing import Optional

from ..models.entities import Connection, ConnectionType


# Initial TTLs used by common stacks: Linux/macOS, Windows, network gear
COMMON_INITIAL_TTLS = (64, 128, 255)


def estimate_initial_ttl(ttl: float) -> int:
    """Smallest common initial TTL that could have produced ``ttl``."""
    for initial in COMMON_INITIAL_TTLS:
        if ttl <= initial:
            return initial
    return COMMON_INITIAL_TTLS[-1]


def estimate_hop_count(ttl: float) -> int:
    """Routers crossed between sender and observer."""
    observed = int(round(ttl))
    return estimate_initial_ttl(observed) - observed


def classify_flags(
    is_peer_link: bool,
    destination_virtual: bool,
    destination_local: bool,
) -> ConnectionType:
    """Address-based classification over plain flags."""
    if is_peer_link:
        return ConnectionType.TLS_PEER
    if destination_virtual:
        return ConnectionType.INTERNET
    if destination_local:
        return ConnectionType.DIRECT_L2
    return ConnectionType.INTERNET


def ttl_candidate(connection: Connection) -> Optional[ConnectionType]:
    """Type suggested by the average TTL alone, or None without evidence."""
    if connection.ttl_samples == 0 or connection.average_ttl is None:
        return None
    hops = estimate_hop_count(connection.average_ttl)
    if hops == 0:
        return ConnectionType.DIRECT_L2
    dest = connection.destination
    if dest.is_local and not dest.is_virtual:
        return ConnectionType.ROUTED_L3
    return None


class ConnectionClassifier:
    """
    Stateless classifier for connections.

    Precedence: peer link, virtual destination, local destination, fallback
    INTERNET. With ``ttl_refinement`` a DIRECT_L2 result whose TTL shows at
    least one hop becomes ROUTED_L3.
    """

    def __init__(self, ttl_refinement: bool = False):
        self.ttl_refinement = ttl_refinement

    def classify(self, connection: Connection) -> ConnectionType:
        dest = connection.destination
        result = classify_flags(
            connection.is_tls_peer_connection,
            dest.is_virtual,
            dest.is_local,
        )
        if self.ttl_refinement and result is ConnectionType.DIRECT_L2:
            if ttl_candidate(connection) is ConnectionType.ROUTED_L3:
                return ConnectionType.ROUTED_L3
        return result

    def hop_count(self, connection: Connection) -> Optional[int]:
        if connection.ttl_samples == 0 or connection.average_ttl is None:
            return None
        return estimate_hop_count(connection.average_ttl)
