"""
Entity model for the topology graph.

Devices are identified by MAC address (or by ``remote:<ip>`` for virtual
devices that were only ever seen behind a gateway). Connections are
directed: (A -> B) and (B -> A) are separate records.
"""

import copy
import time
import weakref
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from .addressing import is_local_address


# Inactivity timeouts in seconds, measured from last_seen
GATEWAY_TIMEOUT = 30 * 60
PEER_TIMEOUT = 20 * 60
LOCAL_TIMEOUT = 15 * 60
REMOTE_TIMEOUT = 10 * 60

CONNECTION_ACTIVE_WINDOW = 30
RATE_WINDOW = 30


class DeviceKind(Enum):
    """Display/topology role of a device."""
    LOCAL = "local"
    GATEWAY = "gateway"
    REMOTE = "remote"
    PEER = "peer"


class ConnectionType(IntEnum):
    """How a connection reaches its destination."""
    UNKNOWN = 0
    DIRECT_L2 = 1   # same segment, no routing
    ROUTED_L3 = 2   # through a local gateway, stays inside the LAN
    INTERNET = 3    # remote host beyond the gateway
    TLS_PEER = 4    # authenticated peer link

    @property
    def label(self) -> str:
        return _TYPE_LABELS[self]


_TYPE_LABELS = {
    ConnectionType.UNKNOWN: "Unknown",
    ConnectionType.DIRECT_L2: "Local",
    ConnectionType.ROUTED_L3: "Routed",
    ConnectionType.INTERNET: "Internet",
    ConnectionType.TLS_PEER: "TLS Peer",
}


@dataclass
class PeerLink:
    """Metadata for a verified peer, supplied by the authentication layer."""
    username: str
    fingerprint: str = ""
    connected: bool = False
    verified: bool = False
    avatar: str = ""


@dataclass
class Device:
    """A host seen on (or through) the local segment."""
    mac: Optional[str] = None
    ip: str = ""
    hostname: Optional[str] = None
    device_name: Optional[str] = None
    vendor: Optional[str] = None
    os: Optional[str] = None
    first_seen: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    packet_count: int = 0
    bytes_transferred: int = 0
    open_ports: set = field(default_factory=set)
    is_gateway: bool = False
    is_default_gateway: bool = False
    gateway_role: Optional[str] = None
    hop_count: Optional[int] = None
    is_tls_peer: bool = False
    is_virtual: bool = False
    peer_ref: Optional[weakref.ref] = field(default=None, repr=False, compare=False)

    @classmethod
    def remote(cls, ip: str, **kwargs) -> "Device":
        """Build a virtual device for a host reached only through a gateway."""
        kwargs.setdefault("vendor", "Remote Host")
        return cls(mac=None, ip=ip, is_virtual=True, **kwargs)

    @property
    def key(self) -> str:
        if self.is_virtual:
            return f"remote:{self.ip}"
        return (self.mac or "").lower()

    @property
    def is_local(self) -> bool:
        return is_local_address(self.ip)

    @property
    def kind(self) -> DeviceKind:
        if self.is_tls_peer:
            return DeviceKind.PEER
        if self.is_gateway:
            return DeviceKind.GATEWAY
        if self.is_virtual or not self.is_local:
            return DeviceKind.REMOTE
        return DeviceKind.LOCAL

    @property
    def peer(self) -> Optional[PeerLink]:
        if self.peer_ref is None:
            return None
        return self.peer_ref()

    def attach_peer(self, peer: PeerLink) -> None:
        self.peer_ref = weakref.ref(peer)
        self.is_tls_peer = True

    @property
    def display_name(self) -> str:
        if self.hostname:
            return self.hostname
        if self.vendor:
            return self.vendor
        if self.ip:
            return self.ip
        return (self.mac or "")[:8]

    def activity_timeout(self, timeouts=None) -> float:
        """Seconds of silence after which this device counts as inactive.

        ``timeouts`` may be any object with ``gateway``, ``peer``, ``local``
        and ``remote`` attributes (see config.TimeoutConfig).
        """
        if self.is_gateway:
            return timeouts.gateway if timeouts else GATEWAY_TIMEOUT
        if self.is_tls_peer:
            return timeouts.peer if timeouts else PEER_TIMEOUT
        if self.is_local and not self.is_virtual:
            return timeouts.local if timeouts else LOCAL_TIMEOUT
        return timeouts.remote if timeouts else REMOTE_TIMEOUT

    def is_active(self, now: Optional[float] = None, timeouts=None) -> bool:
        now = time.time() if now is None else now
        return (now - self.last_seen) < self.activity_timeout(timeouts)

    def merge(self, other: "Device") -> None:
        """Fold a later sighting of the same device into this record.

        Identity (MAC / virtual flag) is never touched. Display fields only
        overwrite when the sighting carries a value. Counters are cumulative
        on the capture side, so the larger value wins.
        """
        if other.ip:
            self.ip = other.ip
        for attr in ("hostname", "device_name", "vendor", "os"):
            value = getattr(other, attr)
            if value:
                setattr(self, attr, value)
        self.first_seen = min(self.first_seen, other.first_seen)
        self.last_seen = max(self.last_seen, other.last_seen)
        self.packet_count = max(self.packet_count, other.packet_count)
        self.bytes_transferred = max(self.bytes_transferred, other.bytes_transferred)
        self.open_ports |= other.open_ports
        if other.is_tls_peer:
            self.is_tls_peer = True
            if other.peer_ref is not None:
                self.peer_ref = other.peer_ref

    def copy(self) -> "Device":
        dup = copy.copy(self)
        dup.open_ports = set(self.open_ports)
        return dup

    def __str__(self) -> str:
        name = self.hostname or self.device_name
        if name:
            return f"{name} ({self.ip or self.key})"
        return self.ip or self.key


@dataclass
class Connection:
    """A directed flow aggregate between two devices."""
    source: Device
    destination: Device
    protocol: str = ""
    src_port: Optional[int] = None
    dst_port: Optional[int] = None
    first_seen: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    packet_count: int = 0
    bytes_transferred: int = 0
    recent_packet_count: int = 0
    last_rate_update: float = field(default_factory=time.time)
    min_ttl: Optional[int] = None
    max_ttl: Optional[int] = None
    average_ttl: Optional[float] = None
    ttl_samples: int = 0
    connection_type: ConnectionType = ConnectionType.UNKNOWN
    is_tls_peer_connection: bool = False
    state: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source.key, self.destination.key)

    def is_active(self, now: Optional[float] = None,
                  window: float = CONNECTION_ACTIVE_WINDOW) -> bool:
        now = time.time() if now is None else now
        return (now - self.last_seen) < window

    def record_ttl(self, ttl: int) -> None:
        """Add one TTL sample to the running statistics."""
        if not 0 <= ttl <= 255:
            raise ValueError(f"TTL out of range: {ttl}")
        if self.ttl_samples == 0:
            self.min_ttl = self.max_ttl = ttl
            self.average_ttl = float(ttl)
        else:
            self.min_ttl = min(self.min_ttl, ttl)
            self.max_ttl = max(self.max_ttl, ttl)
            self.average_ttl += (ttl - self.average_ttl) / (self.ttl_samples + 1)
        self.ttl_samples += 1

    def merge_ttl(self, other: "Connection") -> None:
        """Fold another aggregate's TTL statistics into this one."""
        if other.ttl_samples == 0:
            return
        if self.ttl_samples == 0:
            self.min_ttl = other.min_ttl
            self.max_ttl = other.max_ttl
            self.average_ttl = other.average_ttl
            self.ttl_samples = other.ttl_samples
            return
        total = self.ttl_samples + other.ttl_samples
        self.average_ttl = (
            self.average_ttl * self.ttl_samples
            + other.average_ttl * other.ttl_samples
        ) / total
        self.min_ttl = min(self.min_ttl, other.min_ttl)
        self.max_ttl = max(self.max_ttl, other.max_ttl)
        self.ttl_samples = total

    def record_packet(self, size: int, ttl: Optional[int] = None,
                      now: Optional[float] = None) -> None:
        """Account for a single observed packet."""
        self.packet_count += 1
        self.recent_packet_count += 1
        self.bytes_transferred += size
        self.last_seen = time.time() if now is None else now
        if ttl is not None:
            self.record_ttl(ttl)

    def copy(self, source: Optional[Device] = None,
             destination: Optional[Device] = None) -> "Connection":
        dup = copy.copy(self)
        dup.source = source if source is not None else self.source.copy()
        dup.destination = destination if destination is not None else self.destination.copy()
        return dup

    def __str__(self) -> str:
        ports = ""
        if self.src_port is not None and self.dst_port is not None:
            ports = f" {self.src_port}->{self.dst_port}"
        return f"{self.source} -> {self.destination} ({self.protocol}{ports})"
