"""Tests for connection classification."""

import pytest
from netconstellation.graph.classify import (
    ConnectionClassifier,
    classify_flags,
    estimate_hop_count,
    estimate_initial_ttl,
    ttl_candidate,
)
from netconstellation.models.entities import Connection, ConnectionType, Device


def _local(mac, ip):
    return Device(mac=mac, ip=ip)


def _conn(dst, ttls=(), peer=False):
    conn = Connection(_local("00:00:00:00:00:0a", "192.168.1.10"), dst,
                      is_tls_peer_connection=peer)
    for ttl in ttls:
        conn.record_ttl(ttl)
    return conn


class TestTtlEstimates:
    @pytest.mark.parametrize("ttl,initial", [(1, 64), (64, 64), (65, 128), (128, 128),
                                             (129, 255), (255, 255)])
    def test_initial_ttl(self, ttl, initial):
        assert estimate_initial_ttl(ttl) == initial

    @pytest.mark.parametrize("ttl,hops", [(64, 0), (63, 1), (57, 7), (118, 10), (250, 5)])
    def test_hop_count(self, ttl, hops):
        assert estimate_hop_count(ttl) == hops

    def test_hop_count_rounds_average(self):
        assert estimate_hop_count(62.6) == 1


class TestClassifyFlags:
    def test_precedence(self):
        assert classify_flags(True, True, False) is ConnectionType.TLS_PEER
        assert classify_flags(False, True, True) is ConnectionType.INTERNET
        assert classify_flags(False, False, True) is ConnectionType.DIRECT_L2
        assert classify_flags(False, False, False) is ConnectionType.INTERNET


class TestConnectionClassifier:
    def test_local_then_virtual_then_peer(self):
        classifier = ConnectionClassifier()
        local = _conn(_local("00:00:00:00:00:0b", "192.168.1.20"))
        assert classifier.classify(local) is ConnectionType.DIRECT_L2

        remote = _conn(Device.remote("192.168.1.20"))
        assert classifier.classify(remote) is ConnectionType.INTERNET

        remote.is_tls_peer_connection = True
        assert classifier.classify(remote) is ConnectionType.TLS_PEER

    def test_non_local_destination_is_internet(self):
        conn = _conn(_local("00:00:00:00:00:0b", "93.184.216.34"))
        assert ConnectionClassifier().classify(conn) is ConnectionType.INTERNET

    def test_ttl_ignored_by_default(self):
        conn = _conn(_local("00:00:00:00:00:0b", "10.0.5.2"), ttls=(61, 61))
        assert ConnectionClassifier().classify(conn) is ConnectionType.DIRECT_L2

    def test_ttl_refinement_routes_local_hop(self):
        conn = _conn(_local("00:00:00:00:00:0b", "10.0.5.2"), ttls=(61, 61))
        assert ConnectionClassifier(ttl_refinement=True).classify(conn) is ConnectionType.ROUTED_L3

    def test_ttl_refinement_never_overrides_address_rules(self):
        classifier = ConnectionClassifier(ttl_refinement=True)
        direct = _conn(_local("00:00:00:00:00:0b", "10.0.5.2"), ttls=(64,))
        assert classifier.classify(direct) is ConnectionType.DIRECT_L2
        remote = _conn(Device.remote("8.8.8.8"), ttls=(50,))
        assert classifier.classify(remote) is ConnectionType.INTERNET
        peer = _conn(_local("00:00:00:00:00:0b", "10.0.5.2"), ttls=(50,), peer=True)
        assert classifier.classify(peer) is ConnectionType.TLS_PEER

    def test_ttl_candidate(self):
        assert ttl_candidate(_conn(_local("00:00:00:00:00:0b", "10.0.0.2"))) is None
        assert ttl_candidate(_conn(_local("00:00:00:00:00:0b", "10.0.0.2"), ttls=(64,))) \
            is ConnectionType.DIRECT_L2
        assert ttl_candidate(_conn(_local("00:00:00:00:00:0b", "10.0.0.2"), ttls=(60,))) \
            is ConnectionType.ROUTED_L3
        assert ttl_candidate(_conn(Device.remote("8.8.8.8"), ttls=(60,))) is None

    def test_hop_count(self):
        classifier = ConnectionClassifier()
        assert classifier.hop_count(_conn(Device.remote("8.8.8.8"))) is None
        assert classifier.hop_count(_conn(Device.remote("8.8.8.8"), ttls=(120,))) == 8
