"""
Topology monitor.

Wires the store, classifier, gateway detector, analyzer, layout cache and
renderer together. ``tick`` runs the periodic maintenance; ``render``
produces one frame of the topology view.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .analysis.topology import EdgeImportance, ResilienceReport, TopologyAnalyzer
from .config import MonitorConfig
from .graph.classify import ConnectionClassifier
from .graph.store import GraphStore, NetworkStatistics
from .ingest.capture import CaptureBridge, CaptureFeed
from .ingest.gateway import GatewayDetector, GatewayMatch
from .models.entities import Device
from .viz.grid import Grid, GridRenderer, RenderEdge
from .viz.layout import LayoutCache, edge_triples

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    removed: list[str] = field(default_factory=list)
    rates_reset: int = 0
    gateways: list[GatewayMatch] = field(default_factory=list)
    reclassified: int = 0


def select_display_devices(
    devices: list[Device],
    limit: int = 15,
    show_all: bool = False,
    now: Optional[float] = None,
    timeouts=None,
) -> list[Device]:
    """
    Devices worth drawing, most important first.

    Gateways and peers always come first and are never dropped. The
    remaining slots up to ``limit`` go to active devices by most recent
    sighting, then inactive ones.
    """
    now = time.time() if now is None else now

    def priority(d: Device) -> bool:
        return d.is_gateway or d.is_tls_peer

    if show_all:
        return sorted(
            devices,
            key=lambda d: (priority(d), d.is_active(now, timeouts), d.last_seen),
            reverse=True,
        )

    chosen = [d for d in devices if priority(d)]
    slots = max(0, limit - len(chosen))
    rest = sorted((d for d in devices if not priority(d)), key=lambda d: d.last_seen, reverse=True)
    active = [d for d in rest if d.is_active(now, timeouts)][:slots]
    inactive = [d for d in rest if not d.is_active(now, timeouts)][:max(0, slots - len(active))]
    return chosen + active + inactive


class TopologyMonitor:
    """Owns one live topology and the pipeline that draws it."""

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        store: Optional[GraphStore] = None,
        detector: Optional[GatewayDetector] = None,
        classifier: Optional[ConnectionClassifier] = None,
    ):
        self.config = config or MonitorConfig()
        timeouts = self.config.timeouts
        self.store = store or GraphStore(timeouts)
        self.detector = detector or GatewayDetector()
        self.classifier = classifier or ConnectionClassifier(
            ttl_refinement=self.config.analysis.ttl_refinement
        )
        self.analyzer = TopologyAnalyzer(connection_window=timeouts.connection, timeouts=timeouts)
        # The drawn spanning tree keeps idle links between active devices
        self._render_analyzer = TopologyAnalyzer(
            connection_window=timeouts.connection,
            timeouts=timeouts,
            active_connections_only=False,
        )
        self.importance = EdgeImportance(self.config.display.min_edge_strength)
        self.layout_cache = LayoutCache()
        self.renderer = GridRenderer(use_ascii=self.config.display.use_ascii)
        self.bridge = CaptureBridge(self.store, self.config.filters)

    def ingest(self, feed: CaptureFeed) -> int:
        return self.bridge.consume(feed)

    def tick(self, now: Optional[float] = None) -> TickResult:
        """Inactivity sweep, rate reset, gateway refresh, reclassification."""
        now = time.time() if now is None else now
        result = TickResult()
        result.removed = self.store.cleanup_inactive_devices(now)
        result.rates_reset = self.store.reset_connection_rates(now)

        devices = self.store.get_all_devices()
        connections = self.store.get_all_connections()
        result.gateways = self.detector.refresh_gateways(devices, connections)
        self.store.apply_gateway_roles(result.gateways)

        result.reclassified = self.store.update_connection_types(self.classifier)
        logger.debug(
            "Tick: %d removed, %d rates reset, %d gateways, %d reclassified",
            len(result.removed), result.rates_reset, len(result.gateways), result.reclassified,
        )
        return result

    def display_devices(self, now: Optional[float] = None, show_all: bool = False) -> list[Device]:
        return select_display_devices(
            self.store.get_all_devices(),
            limit=self.config.display.max_display_devices,
            show_all=show_all,
            now=now,
            timeouts=self.config.timeouts,
        )

    def render(
        self,
        width: int,
        height: int,
        now: Optional[float] = None,
        show_all: bool = False,
    ) -> Grid:
        now = time.time() if now is None else now
        devices = self.display_devices(now, show_all)
        keys = {d.key for d in devices}
        connections = [
            c for c in self.store.get_all_connections()
            if c.source.key in keys and c.destination.key in keys
        ]

        mst_keys = self._render_analyzer.mst_edge_keys(devices, connections, now)
        shown = self.importance.filter(connections, mst_keys)
        positions = self.layout_cache.get_positions(
            devices, edge_triples(connections), width, height
        )
        return self.renderer.render(
            positions,
            devices,
            [RenderEdge.from_connection(c) for c in shown],
            width,
            height,
            now=now,
            timeouts=self.config.timeouts,
        )

    def resilience(self, now: Optional[float] = None) -> ResilienceReport:
        return self.analyzer.resilience_summary(
            self.store.get_all_devices(), self.store.get_all_connections(), now
        )

    def statistics(self, now: Optional[float] = None) -> NetworkStatistics:
        return self.store.get_statistics(now)
