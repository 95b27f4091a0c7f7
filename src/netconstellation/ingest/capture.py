"""
Capture feed boundary.

A capture feed yields DeviceDiscovered / ConnectionDetected events;
CaptureBridge filters utility traffic (broadcast, multicast, loopback...)
and pushes the rest into a GraphStore. SyntheticCaptureFeed produces a
small reproducible network for demos and tests.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Protocol, Union

import numpy as np

from ..config import FilterConfig
from ..models.addressing import (
    filter_reason,
    is_local_address,
    is_utility_address,
    is_utility_mac,
)
from ..models.entities import Connection, Device, PeerLink

logger = logging.getLogger(__name__)


@dataclass
class DeviceDiscovered:
    device: Device


@dataclass
class ConnectionDetected:
    connection: Connection


CaptureEvent = Union[DeviceDiscovered, ConnectionDetected]


class CaptureFeed(Protocol):
    def events(self) -> Iterable[CaptureEvent]:
        ...


@dataclass
class FilterStats:
    """What the bridge let through and what it dropped, by reason."""
    devices_accepted: int = 0
    connections_accepted: int = 0
    devices_filtered: int = 0
    connections_filtered: int = 0
    reasons: Counter = field(default_factory=Counter)

    @property
    def total_filtered(self) -> int:
        return self.devices_filtered + self.connections_filtered


class CaptureBridge:
    """Pushes capture events into a store, dropping utility traffic."""

    def __init__(self, store, filters: Optional[FilterConfig] = None):
        self.store = store
        self.filters = filters or FilterConfig()
        self.stats = FilterStats()

    def rejection_reason(self, device: Device) -> Optional[str]:
        """Why ``device`` would be filtered, or None to accept it."""
        f = self.filters
        if not device.is_virtual and f.filter_utility_macs and is_utility_mac(device.mac or ""):
            return "Utility MAC address"
        if device.ip and is_utility_address(
            device.ip,
            loopback=f.filter_loopback,
            broadcast=f.filter_broadcast,
            multicast=f.filter_multicast,
            link_local=f.filter_link_local,
            reserved=f.filter_reserved,
        ):
            return filter_reason(device.ip)
        if f.filter_non_local and not device.is_virtual and not is_local_address(device.ip):
            return "Non-local address"
        return None

    def handle(self, event: CaptureEvent) -> bool:
        """Apply one event. Returns True if it reached the store."""
        if isinstance(event, DeviceDiscovered):
            reason = self.rejection_reason(event.device)
            if reason:
                self.stats.devices_filtered += 1
                self.stats.reasons[reason] += 1
                logger.debug("Filtered device %s: %s", event.device, reason)
                return False
            if self.store.add_device(event.device) is None:
                return False
            self.stats.devices_accepted += 1
            return True

        if isinstance(event, ConnectionDetected):
            conn = event.connection
            reason = self.rejection_reason(conn.source) or self.rejection_reason(conn.destination)
            if reason:
                self.stats.connections_filtered += 1
                self.stats.reasons[reason] += 1
                logger.debug("Filtered connection %s: %s", conn, reason)
                return False
            if self.store.add_connection(conn) is None:
                return False
            self.stats.connections_accepted += 1
            return True

        raise TypeError(f"Unknown capture event: {event!r}")

    def consume(self, feed: CaptureFeed) -> int:
        """Drain ``feed`` into the store. Returns the number of accepted events."""
        accepted = sum(1 for event in feed.events() if self.handle(event))
        logger.info(
            "Capture feed drained: %d accepted, %d filtered",
            accepted, self.stats.total_filtered,
        )
        return accepted


def _random_mac(rng: np.random.Generator) -> str:
    octets = rng.integers(0, 256, size=6)
    # Locally administered unicast
    octets[0] = (int(octets[0]) & 0xFC) | 0x02
    return ":".join(f"{int(o):02x}" for o in octets)


class SyntheticCaptureFeed:
    """
    Deterministic small network: one gateway, local hosts, remote hosts
    reached through the gateway, and optionally an authenticated peer.
    The same seed and ``now`` always yield the same events.
    """

    GATEWAY_IP = "192.168.1.1"
    PROTOCOLS = ("TCP", "UDP")
    SERVICE_PORTS = (22, 53, 80, 443, 445, 8080)

    def __init__(
        self,
        seed: int = 0,
        local_hosts: int = 5,
        remote_hosts: int = 3,
        include_peer: bool = True,
        now: Optional[float] = None,
    ):
        self.seed = seed
        self.local_hosts = local_hosts
        self.remote_hosts = remote_hosts
        self.include_peer = include_peer
        self.now = time.time() if now is None else now
        self.peer_link = PeerLink(username="synthetic-peer", verified=True, connected=True)

    @property
    def gateway_ip(self) -> str:
        return self.GATEWAY_IP

    def _connection(self, rng, src: Device, dst: Device, ttl: int, **kwargs) -> Connection:
        packets = int(rng.integers(1, 200))
        conn = Connection(
            source=src,
            destination=dst,
            protocol=str(rng.choice(self.PROTOCOLS)),
            src_port=int(rng.integers(32768, 61000)),
            dst_port=int(rng.choice(self.SERVICE_PORTS)),
            first_seen=self.now - 60,
            last_seen=self.now - float(rng.integers(0, 10)),
            packet_count=packets,
            bytes_transferred=packets * int(rng.integers(60, 1500)),
            last_rate_update=self.now,
            **kwargs,
        )
        conn.record_ttl(ttl)
        return conn

    def events(self) -> Iterator[CaptureEvent]:
        rng = np.random.default_rng(self.seed)

        def local(ip, **kwargs):
            return Device(
                mac=_random_mac(rng), ip=ip,
                first_seen=self.now - 300, last_seen=self.now,
                packet_count=int(rng.integers(1, 1000)), **kwargs,
            )

        gateway = local(self.GATEWAY_IP, hostname="gateway", vendor="Router")
        hosts = [local(f"192.168.1.{10 + i}", hostname=f"host-{i + 1}")
                 for i in range(self.local_hosts)]
        remotes = [
            Device.remote(f"203.0.113.{10 + i}", first_seen=self.now - 120, last_seen=self.now)
            for i in range(self.remote_hosts)
        ]
        peer = None
        if self.include_peer:
            peer = local("192.168.1.200", hostname="peer")
            peer.attach_peer(self.peer_link)

        for device in [gateway, *hosts, *([peer] if peer else [])]:
            yield DeviceDiscovered(device)

        for host in hosts:
            yield ConnectionDetected(self._connection(rng, host, gateway, ttl=64))
        for remote in remotes:
            via = hosts[int(rng.integers(0, len(hosts)))] if hosts else gateway
            yield ConnectionDetected(self._connection(rng, via, remote, ttl=64))
            yield ConnectionDetected(self._connection(rng, remote, via, ttl=int(rng.integers(40, 60))))
        for i in range(len(hosts) - 1):
            if rng.random() < 0.5:
                yield ConnectionDetected(self._connection(rng, hosts[i], hosts[i + 1], ttl=64))
        if peer is not None and hosts:
            yield ConnectionDetected(
                self._connection(rng, peer, hosts[0], ttl=64, is_tls_peer_connection=True)
            )
