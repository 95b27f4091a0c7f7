"""
Thread-safe incremental graph store.

Devices live in a dict keyed by normalized MAC (``remote:<ip>`` for virtual
devices); connections live in a dict keyed by the ordered (source, dest)
pair, with an adjacency index from device key to the edge keys touching it.
One coarse lock guards every map. Readers get copies, never live records.
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

import networkx as nx

from ..config import TimeoutConfig
from ..models.addressing import MalformedRecordError, normalize_mac, validate_ip
from ..models.entities import Connection, ConnectionType, Device
from ..viz.export import DotExporter

logger = logging.getLogger(__name__)

EdgeKey = tuple[str, str]

DEVICE_ADDED = "device_added"
DEVICE_REMOVED = "device_removed"
CONNECTION_ADDED = "connection_added"


@dataclass
class GraphEvent:
    """Notification delivered to store observers."""
    kind: str
    payload: object
    timestamp: float = field(default_factory=time.time)


@dataclass
class NetworkStatistics:
    total_devices: int = 0
    active_devices: int = 0
    total_connections: int = 0
    active_connections: int = 0
    total_bytes: int = 0
    total_packets: int = 0
    average_degree: float = 0.0

    def __str__(self) -> str:
        return (
            f"Devices: {self.active_devices}/{self.total_devices} | "
            f"Connections: {self.active_connections}/{self.total_connections} | "
            f"Bytes: {format_bytes(self.total_bytes)}"
        )


@dataclass
class TopologyTiers:
    """Devices split into remote hosts, gateways and plain local hosts."""
    remote: list = field(default_factory=list)
    gateways: list = field(default_factory=list)
    local: list = field(default_factory=list)


def format_bytes(count: int) -> str:
    size = float(count)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


class GraphStore:
    """
    In-memory device/connection graph.

    Write path: ``add_device``, ``update_device``, ``add_connection``,
    ``merge_graph``, plus the periodic ``cleanup_inactive_devices``,
    ``reset_connection_rates``, ``apply_gateway_roles`` and
    ``update_connection_types``. Malformed records are logged and dropped
    without touching state.

    Observers registered with ``subscribe`` receive GraphEvent objects after
    the lock has been released.
    """

    def __init__(self, timeouts: Optional[TimeoutConfig] = None):
        self.timeouts = timeouts or TimeoutConfig()
        self._lock = threading.Lock()
        self._devices: dict[str, Device] = {}
        self._edges: dict[EdgeKey, Connection] = {}
        self._adjacency: dict[str, set[EdgeKey]] = {}
        self._ip_index: dict[str, str] = {}
        self._observers: list[Callable[[GraphEvent], None]] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[GraphEvent], None]) -> None:
        with self._lock:
            if callback not in self._observers:
                self._observers.append(callback)

    def unsubscribe(self, callback: Callable[[GraphEvent], None]) -> None:
        with self._lock:
            if callback in self._observers:
                self._observers.remove(callback)

    def _notify(self, events: list[GraphEvent]) -> None:
        if not events:
            return
        with self._lock:
            observers = list(self._observers)
        for event in events:
            for callback in observers:
                try:
                    callback(event)
                except Exception:
                    logger.exception("Observer %r failed on %s", callback, event.kind)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    @staticmethod
    def _normalized(device: Device) -> Device:
        """Validated copy of ``device`` with canonical MAC and IP."""
        record = device.copy()
        if record.is_virtual:
            record.mac = None
            record.ip = validate_ip(record.ip)
        else:
            record.mac = normalize_mac(record.mac)
            record.ip = validate_ip(record.ip) if record.ip else ""
        return record

    def _index_ip(self, key: str, ip: str) -> None:
        if ip:
            self._ip_index[ip] = key

    def _unindex_ip(self, key: str, ip: str) -> None:
        if ip and self._ip_index.get(ip) == key:
            del self._ip_index[ip]

    def _upsert_device(self, record: Device) -> tuple[Device, bool]:
        key = record.key
        existing = self._devices.get(key)
        if existing is None:
            self._devices[key] = record
            self._adjacency[key] = set()
            self._index_ip(key, record.ip)
            logger.info("Added device to graph: %s", record)
            return record, True

        old_ip = existing.ip
        existing.merge(record)
        if old_ip != existing.ip:
            self._unindex_ip(key, old_ip)
        self._index_ip(key, existing.ip)
        logger.debug("Merged sighting into device %s", existing)
        return existing, False

    def add_device(self, device: Device) -> Optional[Device]:
        """Insert or merge a device. Returns a snapshot, or None if rejected."""
        try:
            record = self._normalized(device)
        except MalformedRecordError as exc:
            logger.warning("Dropping device record: %s", exc)
            return None

        with self._lock:
            stored, created = self._upsert_device(record)
            snapshot = stored.copy()

        if created:
            self._notify([GraphEvent(DEVICE_ADDED, snapshot.copy())])
        return snapshot

    def update_device(self, device: Device) -> Optional[Device]:
        """Merge into an existing device; unknown devices are ignored."""
        try:
            record = self._normalized(device)
        except MalformedRecordError as exc:
            logger.warning("Dropping device update: %s", exc)
            return None

        with self._lock:
            if record.key not in self._devices:
                logger.debug("Update for unknown device %s ignored", record.key)
                return None
            stored, _ = self._upsert_device(record)
            return stored.copy()

    def add_connection(self, connection: Connection) -> Optional[Connection]:
        """Insert a directed edge or aggregate into the existing one."""
        try:
            source = self._normalized(connection.source)
            destination = self._normalized(connection.destination)
        except MalformedRecordError as exc:
            logger.warning("Dropping connection record: %s", exc)
            return None

        events = []
        with self._lock:
            src, src_created = self._upsert_device(source)
            dst, dst_created = self._upsert_device(destination)
            if src_created:
                events.append(GraphEvent(DEVICE_ADDED, src.copy()))
            if dst_created:
                events.append(GraphEvent(DEVICE_ADDED, dst.copy()))

            key = (src.key, dst.key)
            edge = self._edges.get(key)
            if edge is None:
                edge = connection.copy(source=src, destination=dst)
                edge.recent_packet_count = max(edge.recent_packet_count, edge.packet_count)
                self._edges[key] = edge
                self._adjacency[src.key].add(key)
                self._adjacency[dst.key].add(key)
                logger.info("Added connection to graph: %s", edge)
                snapshot = edge.copy()
                events.append(GraphEvent(CONNECTION_ADDED, edge.copy()))
            else:
                edge.packet_count += connection.packet_count
                edge.bytes_transferred += connection.bytes_transferred
                edge.recent_packet_count += connection.packet_count
                edge.last_seen = max(edge.last_seen, connection.last_seen)
                edge.merge_ttl(connection)
                if connection.is_tls_peer_connection:
                    edge.is_tls_peer_connection = True
                if connection.state:
                    edge.state = connection.state
                snapshot = edge.copy()

        self._notify(events)
        return snapshot

    def merge_graph(self, devices: Iterable[Device], connections: Iterable[Connection]) -> None:
        """Fold another observer's graph into this one."""
        devices = list(devices)
        connections = list(connections)
        logger.info(
            "Merging peer graph: %d devices, %d connections",
            len(devices), len(connections),
        )
        for device in devices:
            self.add_device(device)
        for connection in connections:
            self.add_connection(connection)

    def _remove_device_locked(self, key: str) -> Optional[Device]:
        device = self._devices.pop(key, None)
        if device is None:
            return None
        for edge_key in self._adjacency.pop(key, set()):
            self._edges.pop(edge_key, None)
            other = edge_key[1] if edge_key[0] == key else edge_key[0]
            if other in self._adjacency:
                self._adjacency[other].discard(edge_key)
        self._unindex_ip(key, device.ip)
        return device

    def cleanup_inactive_devices(self, now: Optional[float] = None) -> list[str]:
        """Remove devices inactive for longer than the grace window."""
        now = time.time() if now is None else now
        grace = self.timeouts.cleanup_grace
        removed = []
        with self._lock:
            stale = [
                key for key, device in self._devices.items()
                if now - device.last_seen > device.activity_timeout(self.timeouts) + grace
            ]
            for key in stale:
                device = self._remove_device_locked(key)
                if device is not None:
                    removed.append(device)
                    logger.debug(
                        "Removed inactive device %s, last seen %.0fs ago",
                        key, now - device.last_seen,
                    )
            remaining = len(self._devices)

        if removed:
            logger.info(
                "Cleanup removed %d inactive devices, %d remaining",
                len(removed), remaining,
            )
            self._notify([GraphEvent(DEVICE_REMOVED, d) for d in removed])
        return [d.key for d in removed]

    def reset_connection_rates(self, now: Optional[float] = None) -> int:
        """Zero the recent-packet counter of every edge whose window elapsed."""
        now = time.time() if now is None else now
        reset = 0
        with self._lock:
            for edge in self._edges.values():
                if now - edge.last_rate_update >= self.timeouts.rate_window:
                    edge.recent_packet_count = 0
                    edge.last_rate_update = now
                    reset += 1
        if reset:
            logger.debug("Reset packet rate on %d connections", reset)
        return reset

    def apply_gateway_roles(self, matches: Iterable) -> int:
        """Replace gateway flags with ``matches`` (objects with key/is_default/role)."""
        matches = list(matches)
        applied = 0
        with self._lock:
            for device in self._devices.values():
                device.is_gateway = False
                device.is_default_gateway = False
                device.gateway_role = None
            for match in matches:
                device = self._devices.get(match.key)
                if device is None:
                    continue
                device.is_gateway = True
                device.is_default_gateway = match.is_default
                device.gateway_role = match.role
                applied += 1
        return applied

    def update_connection_types(self, classifier) -> int:
        """Reclassify every edge against current endpoint state."""
        updated = 0
        with self._lock:
            hops: dict[str, int] = {}
            for edge in self._edges.values():
                new_type = classifier.classify(edge)
                if new_type != edge.connection_type:
                    edge.connection_type = new_type
                    updated += 1
                hop_count = classifier.hop_count(edge)
                if hop_count is not None:
                    src = edge.source.key
                    hops[src] = min(hop_count, hops.get(src, hop_count))
            for key, hop_count in hops.items():
                self._devices[key].hop_count = hop_count
        if updated:
            logger.info("Updated %d connection types", updated)
        return updated

    def clear(self) -> None:
        with self._lock:
            self._devices.clear()
            self._edges.clear()
            self._adjacency.clear()
            self._ip_index.clear()
        logger.info("Graph cleared")

    # ------------------------------------------------------------------
    # Read path (copies only)
    # ------------------------------------------------------------------

    def _key_for(self, device_or_key: Union[Device, str]) -> str:
        if isinstance(device_or_key, Device):
            device_or_key = device_or_key.key if device_or_key.is_virtual else device_or_key.mac or ""
        if device_or_key.startswith("remote:"):
            try:
                return "remote:" + validate_ip(device_or_key[len("remote:"):])
            except MalformedRecordError:
                return device_or_key
        try:
            return normalize_mac(device_or_key)
        except MalformedRecordError:
            return device_or_key.lower()

    @staticmethod
    def _copy_edges(edges: Iterable[Connection]) -> list[Connection]:
        copies: dict[str, Device] = {}

        def dev(device: Device) -> Device:
            if device.key not in copies:
                copies[device.key] = device.copy()
            return copies[device.key]

        return [e.copy(source=dev(e.source), destination=dev(e.destination)) for e in edges]

    def get_device(self, mac: str) -> Optional[Device]:
        key = self._key_for(mac)
        with self._lock:
            device = self._devices.get(key)
            return device.copy() if device else None

    def get_device_by_ip(self, ip: str) -> Optional[Device]:
        try:
            ip = validate_ip(ip)
        except MalformedRecordError:
            return None
        with self._lock:
            key = self._ip_index.get(ip)
            device = self._devices.get(key) if key else None
            return device.copy() if device else None

    def get_all_devices(self) -> list[Device]:
        with self._lock:
            return [d.copy() for d in self._devices.values()]

    def get_all_connections(self) -> list[Connection]:
        with self._lock:
            return self._copy_edges(self._edges.values())

    def get_active_connections(self, now: Optional[float] = None) -> list[Connection]:
        now = time.time() if now is None else now
        window = self.timeouts.connection
        with self._lock:
            return self._copy_edges(
                e for e in self._edges.values() if e.is_active(now, window)
            )

    def get_device_connections(self, device: Union[Device, str]) -> list[Connection]:
        """Outgoing then incoming edges of ``device``."""
        key = self._key_for(device)
        with self._lock:
            edge_keys = self._adjacency.get(key, set())
            outgoing = [self._edges[k] for k in self._edges if k in edge_keys and k[0] == key]
            incoming = [self._edges[k] for k in self._edges if k in edge_keys and k[0] != key]
            return self._copy_edges(outgoing + incoming)

    def get_connected_devices(self, device: Union[Device, str]) -> list[Device]:
        key = self._key_for(device)
        with self._lock:
            neighbours = []
            for src, dst in self._edges:
                if key not in (src, dst):
                    continue
                other = dst if src == key else src
                if other != key and other not in neighbours:
                    neighbours.append(other)
            return [self._devices[k].copy() for k in neighbours]

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, device: object) -> bool:
        if not isinstance(device, (Device, str)):
            return False
        key = self._key_for(device)
        with self._lock:
            return key in self._devices

    # ------------------------------------------------------------------
    # Query boundary
    # ------------------------------------------------------------------

    def get_statistics(self, now: Optional[float] = None) -> NetworkStatistics:
        now = time.time() if now is None else now
        with self._lock:
            devices = list(self._devices.values())
            edges = list(self._edges.values())
            return NetworkStatistics(
                total_devices=len(devices),
                active_devices=sum(1 for d in devices if d.is_active(now, self.timeouts)),
                total_connections=len(edges),
                active_connections=sum(
                    1 for e in edges if e.is_active(now, self.timeouts.connection)
                ),
                total_bytes=sum(e.bytes_transferred for e in edges),
                total_packets=sum(e.packet_count for e in edges),
                average_degree=len(edges) / len(devices) if devices else 0.0,
            )

    def export_to_dot(self) -> str:
        with self._lock:
            devices = list(self._devices.values())
            edges = list(self._edges.values())
            return DotExporter.to_dot(devices, edges)

    def get_protocol_distribution(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(e.protocol or "Unknown" for e in self._edges.values()))

    def get_port_distribution(self) -> dict[int, int]:
        with self._lock:
            return dict(Counter(
                e.dst_port for e in self._edges.values() if e.dst_port is not None
            ))

    def get_gateway_devices(self) -> list[Device]:
        return [d for d in self.get_all_devices() if d.is_gateway]

    def get_default_gateway(self) -> Optional[Device]:
        for device in self.get_all_devices():
            if device.is_default_gateway:
                return device
        return None

    def get_topology_tiers(self) -> TopologyTiers:
        tiers = TopologyTiers()
        for device in self.get_all_devices():
            if device.is_virtual:
                tiers.remote.append(device)
            elif device.is_gateway:
                tiers.gateways.append(device)
            elif device.is_local:
                tiers.local.append(device)
        logger.debug(
            "Tiers: %d remote, %d gateways, %d local",
            len(tiers.remote), len(tiers.gateways), len(tiers.local),
        )
        return tiers

    def get_connections_by_type(self, connection_type: ConnectionType) -> list[Connection]:
        return [
            c for c in self.get_all_connections()
            if c.connection_type == connection_type
        ]

    def get_connections_to_gateway(self, device: Union[Device, str]) -> list[Connection]:
        key = self._key_for(device)
        return [
            c for c in self.get_all_connections()
            if (c.source.key == key and c.destination.is_gateway)
            or (c.destination.key == key and c.source.is_gateway)
        ]

    def get_gateway_to_internet_connections(self) -> list[Connection]:
        return [
            c for c in self.get_all_connections()
            if (c.source.is_gateway and c.destination.is_virtual)
            or (c.destination.is_gateway and c.source.is_virtual)
        ]

    def to_networkx(self) -> nx.DiGraph:
        """Directed snapshot for ad-hoc analysis."""
        G = nx.DiGraph()
        with self._lock:
            for key, device in self._devices.items():
                G.add_node(
                    key,
                    ip=device.ip,
                    label=device.display_name,
                    kind=device.kind.value,
                    is_gateway=device.is_gateway,
                    is_virtual=device.is_virtual,
                )
            for (src, dst), edge in self._edges.items():
                G.add_edge(
                    src, dst,
                    protocol=edge.protocol,
                    packets=edge.packet_count,
                    bytes=edge.bytes_transferred,
                    type=edge.connection_type.name,
                )
        return G
