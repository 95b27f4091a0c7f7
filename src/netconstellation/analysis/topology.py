"""
Topology analysis over graph snapshots.

Projects the directed device/connection snapshot onto an undirected
networkx graph, then computes a packet-weighted minimum spanning tree, a
vertex-cut estimate, and the edge importance filter used by the renderer.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

import networkx as nx
from networkx.utils import UnionFind

from ..models.entities import CONNECTION_ACTIVE_WINDOW, Connection, Device

logger = logging.getLogger(__name__)

EdgeKey = tuple[str, str]


@dataclass
class ResilienceReport:
    """Connectivity summary for statistics views."""
    vertex_cut: int = 0
    components: int = 0
    mst_edges: int = 0
    articulation_points: list[str] = field(default_factory=list)

    @property
    def has_single_point_of_failure(self) -> bool:
        return bool(self.articulation_points)


class TopologyAnalyzer:
    """
    Spanning tree and connectivity analysis.

    Only active devices take part. By default only active connections do
    too; ``active_connections_only=False`` keeps idle edges between active
    devices, which is what the renderer wants for its spanning tree.
    """

    def __init__(
        self,
        connection_window: float = CONNECTION_ACTIVE_WINDOW,
        timeouts=None,
        active_connections_only: bool = True,
    ):
        self.connection_window = connection_window
        self.timeouts = timeouts
        self.active_connections_only = active_connections_only

    def project(
        self,
        devices: Iterable[Device],
        connections: Iterable[Connection],
        now: Optional[float] = None,
    ) -> nx.Graph:
        """
        Undirected projection of a snapshot.

        (A -> B) and (B -> A) fold into one edge whose ``packets`` is the sum
        of both directions and whose ``weight`` is ``1 / (packets + 1)``.
        Each edge carries ``order``, the index of its first appearance.
        """
        now = time.time() if now is None else now
        G = nx.Graph()
        for device in devices:
            if device.is_active(now, self.timeouts):
                G.add_node(device.key, gateway=device.is_gateway)

        for conn in connections:
            u, v = conn.source.key, conn.destination.key
            if u == v or u not in G or v not in G:
                continue
            if self.active_connections_only and not conn.is_active(now, self.connection_window):
                continue
            if G.has_edge(u, v):
                G[u][v]["packets"] += conn.packet_count
            else:
                G.add_edge(u, v, packets=conn.packet_count, order=G.number_of_edges())

        for _, _, data in G.edges(data=True):
            data["weight"] = 1.0 / (data["packets"] + 1.0)
        return G

    def minimum_spanning_tree(
        self,
        devices: Iterable[Device],
        connections: Iterable[Connection],
        now: Optional[float] = None,
    ) -> list[EdgeKey]:
        """Kruskal spanning forest, heaviest traffic first."""
        G = self.project(devices, connections, now)
        return self._kruskal(G)

    @staticmethod
    def _kruskal(G: nx.Graph) -> list[EdgeKey]:
        if G.number_of_nodes() < 2:
            return []
        edges = sorted(G.edges(data=True), key=lambda e: e[2]["order"])
        # sorted() is stable, so equal weights keep first-appearance order
        edges.sort(key=lambda e: e[2]["weight"])

        forest = UnionFind(G.nodes())
        tree = []
        for u, v, _ in edges:
            if forest[u] != forest[v]:
                forest.union(u, v)
                tree.append((u, v))
        logger.debug("Spanning tree: %d edges over %d devices", len(tree), G.number_of_nodes())
        return tree

    def mst_edge_keys(
        self,
        devices: Iterable[Device],
        connections: Iterable[Connection],
        now: Optional[float] = None,
    ) -> set[EdgeKey]:
        """Both orientations of every spanning tree edge."""
        keys = set()
        for u, v in self.minimum_spanning_tree(devices, connections, now):
            keys.add((u, v))
            keys.add((v, u))
        return keys

    def vertex_cut(
        self,
        devices: Iterable[Device],
        connections: Iterable[Connection],
        now: Optional[float] = None,
    ) -> int:
        """
        Conservative vertex-cut estimate.

        0 for fewer than two active devices or a disconnected projection,
        otherwise the minimum degree. Minimum degree is an upper bound on
        true vertex connectivity, so this is a heuristic, not an exact value.
        """
        return self._vertex_cut(self.project(devices, connections, now))

    @staticmethod
    def _vertex_cut(G: nx.Graph) -> int:
        if G.number_of_nodes() <= 1:
            return 0
        if not nx.is_connected(G):
            return 0
        return min(d for _, d in G.degree())

    def resilience_summary(
        self,
        devices: Iterable[Device],
        connections: Iterable[Connection],
        now: Optional[float] = None,
    ) -> ResilienceReport:
        G = self.project(devices, connections, now)
        if G.number_of_nodes() == 0:
            return ResilienceReport()
        return ResilienceReport(
            vertex_cut=self._vertex_cut(G),
            components=nx.number_connected_components(G),
            mst_edges=len(self._kruskal(G)),
            articulation_points=sorted(nx.articulation_points(G)),
        )


class EdgeImportance:
    """Decides which edges are worth drawing."""

    def __init__(self, min_strength: int = 10):
        self.min_strength = min_strength

    def should_show(self, connection: Connection, mst_keys: set[EdgeKey]) -> bool:
        src, dst = connection.source, connection.destination
        if src.is_gateway or dst.is_gateway or src.is_tls_peer or dst.is_tls_peer:
            return True
        if connection.key in mst_keys:
            return True
        return connection.packet_count >= self.min_strength

    def filter(
        self,
        connections: Iterable[Connection],
        mst_keys: set[EdgeKey],
    ) -> list[Connection]:
        return [c for c in connections if self.should_show(c, mst_keys)]
