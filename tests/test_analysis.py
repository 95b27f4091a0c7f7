"""Tests for topology analysis."""

import pytest
from netconstellation.analysis.topology import EdgeImportance, TopologyAnalyzer
from netconstellation.models.entities import Connection, Device

NOW = 1_700_000_000.0


def _dev(name, **kwargs):
    kwargs.setdefault("last_seen", NOW)
    index = ord(name[0])
    return Device(mac=f"00:00:00:00:00:{index:02x}", ip=f"192.168.1.{index}", **kwargs)


def _conn(src, dst, packets, **kwargs):
    kwargs.setdefault("last_seen", NOW)
    return Connection(src, dst, packet_count=packets, **kwargs)


def _triangle():
    a, b, c = _dev("A"), _dev("B"), _dev("C")
    connections = [_conn(a, b, 100), _conn(b, c, 50), _conn(a, c, 5)]
    return [a, b, c], connections


def _edge_set(edges):
    return {frozenset(e) for e in edges}


class TestProjection:
    def test_both_directions_fold(self):
        a, b = _dev("A"), _dev("B")
        G = TopologyAnalyzer().project([a, b], [_conn(a, b, 3), _conn(b, a, 4)], NOW)
        assert G.number_of_edges() == 1
        assert G[a.key][b.key]["packets"] == 7
        assert G[a.key][b.key]["weight"] == pytest.approx(1 / 8)

    def test_inactive_devices_and_self_loops_dropped(self):
        a, b = _dev("A"), _dev("B", last_seen=NOW - 3600)
        G = TopologyAnalyzer().project([a, b], [_conn(a, b, 3), _conn(a, a, 9)], NOW)
        assert list(G.nodes()) == [a.key]
        assert G.number_of_edges() == 0

    def test_idle_connections(self):
        a, b = _dev("A"), _dev("B")
        idle = _conn(a, b, 3, last_seen=NOW - 120)
        assert TopologyAnalyzer().project([a, b], [idle], NOW).number_of_edges() == 0
        keep = TopologyAnalyzer(active_connections_only=False)
        assert keep.project([a, b], [idle], NOW).number_of_edges() == 1


class TestMinimumSpanningTree:
    def test_prefers_heavy_traffic(self):
        devices, connections = _triangle()
        tree = TopologyAnalyzer().minimum_spanning_tree(devices, connections, NOW)
        a, b, c = (d.key for d in devices)
        assert _edge_set(tree) == {frozenset((a, b)), frozenset((b, c))}

    def test_edge_keys_have_both_orientations(self):
        devices, connections = _triangle()
        keys = TopologyAnalyzer().mst_edge_keys(devices, connections, NOW)
        a, b, c = (d.key for d in devices)
        assert keys == {(a, b), (b, a), (b, c), (c, b)}

    def test_ties_keep_input_order(self):
        a, b, c = _dev("A"), _dev("B"), _dev("C")
        connections = [_conn(b, c, 10), _conn(a, b, 10), _conn(a, c, 10)]
        tree = TopologyAnalyzer().minimum_spanning_tree([a, b, c], connections, NOW)
        assert _edge_set(tree) == {frozenset((b.key, c.key)), frozenset((a.key, b.key))}

    def test_spanning_forest(self):
        a, b, c, d = _dev("A"), _dev("B"), _dev("C"), _dev("D")
        connections = [_conn(a, b, 1), _conn(c, d, 1)]
        tree = TopologyAnalyzer().minimum_spanning_tree([a, b, c, d], connections, NOW)
        assert len(tree) == 2

    def test_trivial_inputs(self):
        analyzer = TopologyAnalyzer()
        assert analyzer.minimum_spanning_tree([], [], NOW) == []
        assert analyzer.minimum_spanning_tree([_dev("A")], [], NOW) == []

    def test_deterministic(self):
        devices, connections = _triangle()
        analyzer = TopologyAnalyzer()
        first = analyzer.minimum_spanning_tree(devices, connections, NOW)
        assert all(
            analyzer.minimum_spanning_tree(devices, connections, NOW) == first
            for _ in range(5)
        )


class TestVertexCut:
    def test_star(self):
        hub = _dev("H")
        leaves = [_dev(n) for n in "XYZ"]
        connections = [_conn(leaf, hub, 10) for leaf in leaves]
        assert TopologyAnalyzer().vertex_cut([hub, *leaves], connections, NOW) == 1

    def test_triangle(self):
        devices, connections = _triangle()
        assert TopologyAnalyzer().vertex_cut(devices, connections, NOW) == 2

    def test_degenerate(self):
        analyzer = TopologyAnalyzer()
        assert analyzer.vertex_cut([], [], NOW) == 0
        assert analyzer.vertex_cut([_dev("A")], [], NOW) == 0
        a, b, c = _dev("A"), _dev("B"), _dev("C")
        assert analyzer.vertex_cut([a, b, c], [_conn(a, b, 5)], NOW) == 0


class TestResilience:
    def test_chain(self):
        a, b, c = _dev("A"), _dev("B"), _dev("C")
        report = TopologyAnalyzer().resilience_summary(
            [a, b, c], [_conn(a, b, 5), _conn(b, c, 5)], NOW
        )
        assert report.vertex_cut == 1
        assert report.components == 1
        assert report.mst_edges == 2
        assert report.articulation_points == [b.key]
        assert report.has_single_point_of_failure

    def test_empty(self):
        report = TopologyAnalyzer().resilience_summary([], [], NOW)
        assert report.components == 0
        assert not report.has_single_point_of_failure


class TestEdgeImportance:
    def test_rules(self):
        importance = EdgeImportance(min_strength=10)
        a, b = _dev("A"), _dev("B")
        gw = _dev("G", is_gateway=True)
        peer = _dev("P", is_tls_peer=True)

        assert importance.should_show(_conn(a, gw, 1), set())
        assert importance.should_show(_conn(peer, a, 1), set())
        assert importance.should_show(_conn(a, b, 1), {(a.key, b.key)})
        assert importance.should_show(_conn(a, b, 10), set())
        assert not importance.should_show(_conn(a, b, 9), set())

    def test_filter(self):
        importance = EdgeImportance(min_strength=10)
        a, b, c = _dev("A"), _dev("B"), _dev("C")
        strong, weak = _conn(a, b, 50), _conn(b, c, 2)
        assert importance.filter([strong, weak], set()) == [strong]
