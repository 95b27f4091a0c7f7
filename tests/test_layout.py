"""Tests for the force-directed layout and its cache."""

import numpy as np
import pytest
from netconstellation.models.entities import Connection, Device
from netconstellation.viz.layout import LayoutCache, LayoutEngine, edge_triples


def _devices(n, gateway_index=None):
    devices = []
    for i in range(n):
        devices.append(Device(
            mac=f"00:00:00:00:00:{i + 1:02x}",
            ip=f"192.168.1.{i + 1}",
            is_gateway=(i == gateway_index),
            is_default_gateway=(i == gateway_index),
        ))
    return devices


def _sample_network():
    devices = _devices(6, gateway_index=0)
    gw = devices[0]
    connections = [Connection(d, gw, packet_count=10 * (i + 1)) for i, d in enumerate(devices[1:])]
    connections.append(Connection(devices[1], devices[2], packet_count=3))
    return devices, edge_triples(connections)


class TestLayoutEngine:
    def test_empty(self):
        assert LayoutEngine().compute([], [], 60, 20) == {}

    def test_single_device_stays_on_ellipse(self):
        # centre (30, 10), radius min(60/6, 20*0.7) = 10, angle 0
        positions = LayoutEngine().compute(_devices(1), [], 60, 20)
        assert positions == {"00:00:00:00:00:01": (40, 10)}

    def test_initial_positions(self):
        pos = LayoutEngine().initial_positions(4, 60, 20)
        assert pos.shape == (4, 2)
        np.testing.assert_allclose(pos[0], [40.0, 10.0])
        np.testing.assert_allclose(pos[1], [30.0, 15.0], atol=1e-9)
        np.testing.assert_allclose(pos[2], [20.0, 10.0], atol=1e-9)

    def test_positions_within_bounds(self):
        devices, edges = _sample_network()
        positions = LayoutEngine().compute(devices, edges, 40, 12)
        assert set(positions) == {d.key for d in devices}
        for x, y in positions.values():
            assert 2 <= x <= 38
            assert 1 <= y <= 11
            assert isinstance(x, int) and isinstance(y, int)

    def test_deterministic(self):
        devices, edges = _sample_network()
        engine = LayoutEngine()
        first = engine.compute(devices, edges, 60, 20)
        assert engine.compute(devices, edges, 60, 20) == first
        # edge order does not matter
        assert engine.compute(devices, list(reversed(edges)), 60, 20) == first

    def test_devices_spread_apart(self):
        devices, edges = _sample_network()
        positions = LayoutEngine().compute(devices, edges, 80, 30)
        assert len(set(positions.values())) > 1

    def test_edges_to_unknown_devices_ignored(self):
        devices = _devices(2)
        edges = [(devices[0].key, "remote:8.8.8.8", 100)]
        assert LayoutEngine().compute(devices, edges, 60, 20) == LayoutEngine().compute(devices, [], 60, 20)

    def test_tiny_canvas(self):
        positions = LayoutEngine().compute(_devices(3), [], 3, 1)
        for x, y in positions.values():
            assert x == 2
            assert y == 0

    @pytest.mark.parametrize("width,height", [(1, 1), (2, 2), (2, 5), (6, 1)])
    def test_positions_stay_on_canvas(self, width, height):
        positions = LayoutEngine().compute(_devices(2), [], width, height)
        for x, y in positions.values():
            assert 0 <= x < width
            assert 0 <= y < height


class TestLayoutCache:
    def test_hit_returns_copy(self):
        devices, edges = _sample_network()
        cache = LayoutCache()
        first = cache.get_positions(devices, edges, 60, 20)
        first["mutated"] = (0, 0)
        second = cache.get_positions(devices, edges, 60, 20)
        assert "mutated" not in second
        assert cache.hits == 1
        assert cache.misses == 1

    def test_hit_skips_engine(self):
        calls = []

        class CountingEngine(LayoutEngine):
            def compute(self, *args, **kwargs):
                calls.append(args)
                return super().compute(*args, **kwargs)

        devices, edges = _sample_network()
        cache = LayoutCache(CountingEngine())
        cache.get_positions(devices, edges, 60, 20)
        cache.get_positions(devices, list(reversed(edges)), 60, 20)
        assert len(calls) == 1

    @pytest.mark.parametrize("change", ["packets", "gateway", "size", "order", "device"])
    def test_invalidation(self, change):
        devices, edges = _sample_network()
        cache = LayoutCache()
        cache.get_positions(devices, edges, 60, 20)
        width, height = 60, 20

        if change == "packets":
            src, dst, packets = edges[0]
            edges = [(src, dst, packets + 1)] + edges[1:]
        elif change == "gateway":
            devices = [d.copy() for d in devices]
            devices[0].is_default_gateway = False
        elif change == "size":
            width = 61
        elif change == "order":
            devices = list(reversed(devices))
        else:
            devices = devices + _devices(7)[6:]

        cache.get_positions(devices, edges, width, height)
        assert cache.misses == 2
        assert cache.hits == 0

    def test_invalidate(self):
        devices, edges = _sample_network()
        cache = LayoutCache()
        cache.get_positions(devices, edges, 60, 20)
        cache.invalidate()
        cache.get_positions(devices, edges, 60, 20)
        assert cache.misses == 2
