"""Tests for graph exporters."""

import json

from netconstellation.models.entities import Connection, ConnectionType, Device
from netconstellation.viz.export import D3Exporter, DotExporter, MermaidExporter


def _sample_network():
    gw = Device(mac="00:00:00:00:00:01", ip="192.168.1.1", hostname="router", is_gateway=True)
    host = Device(mac="00:00:00:00:00:02", ip="192.168.1.2", device_name='my "box"')
    remote = Device.remote("8.8.8.8")
    connections = [
        Connection(host, gw, protocol="UDP", dst_port=53, packet_count=4,
                   connection_type=ConnectionType.DIRECT_L2),
        Connection(gw, remote, protocol="", packet_count=9,
                   connection_type=ConnectionType.INTERNET),
    ]
    return [gw, host, remote], connections


class TestDotExporter:
    def test_to_dot(self):
        devices, connections = _sample_network()
        assert DotExporter.to_dot(devices, connections) == (
            "digraph NetConstellation {\n"
            '  "00:00:00:00:00:01" [label="router"];\n'
            '  "00:00:00:00:00:02" [label="my \\"box\\""];\n'
            '  "remote:8.8.8.8" [label="8.8.8.8"];\n'
            '  "00:00:00:00:00:02" -> "00:00:00:00:00:01" [label="UDP:53"];\n'
            '  "00:00:00:00:00:01" -> "remote:8.8.8.8" [label="Unknown"];\n'
            "}\n"
        )

    def test_empty(self):
        assert DotExporter.to_dot([], []) == "digraph NetConstellation {\n}\n"

    def test_save(self, tmp_path):
        devices, connections = _sample_network()
        path = tmp_path / "graph.dot"
        DotExporter.save(str(path), devices, connections, name="Lan")
        assert path.read_text().startswith("digraph Lan {")

    def test_graph_name_quoted_when_needed(self):
        assert DotExporter.to_dot([], [], name="My LAN") == 'digraph "My LAN" {\n}\n'
        assert DotExporter.to_dot([], [], name="graph").startswith('digraph "graph" {')
        assert DotExporter.to_dot([], [], name="lan_2").startswith("digraph lan_2 {")


class TestD3Exporter:
    def test_nodes_and_links(self):
        devices, connections = _sample_network()
        data = D3Exporter.to_d3_json(devices, connections, positions={"00:00:00:00:00:01": (4, 2)})
        assert [n["id"] for n in data["nodes"]] == ["00:00:00:00:00:01", "00:00:00:00:00:02", "remote:8.8.8.8"]
        assert data["nodes"][0]["group"] == "gateway"
        assert (data["nodes"][0]["fx"], data["nodes"][0]["fy"]) == (4, 2)
        assert "fx" not in data["nodes"][1]
        assert data["links"][0] == {
            "source": 1, "target": 0, "protocol": "UDP", "dst_port": 53,
            "packets": 4, "bytes": 0, "type": "DIRECT_L2",
        }

    def test_skips_dangling_links(self):
        devices, connections = _sample_network()
        data = D3Exporter.to_d3_json(devices[:2], connections)
        assert len(data["links"]) == 1

    def test_save(self, tmp_path):
        devices, connections = _sample_network()
        path = tmp_path / "graph.json"
        D3Exporter.save(str(path), devices, connections)
        assert len(json.loads(path.read_text())["nodes"]) == 3


class TestMermaidExporter:
    def test_shapes(self):
        devices, connections = _sample_network()
        text = MermaidExporter.to_mermaid(devices, connections, title="LAN")
        assert text.startswith("---\ntitle: LAN\n---\ngraph TB")
        assert '00_00_00_00_00_01{"router"}' in text
        assert 'remote_8_8_8_8(("Remote Host"))' in text
        assert '00_00_00_00_00_02 -- "UDP:53" --> 00_00_00_00_00_01' in text

    def test_labels_are_quoted(self):
        tv = Device(mac="00:00:00:00:00:01", ip="192.168.1.7", hostname="tv (living room)")
        box = Device(mac="00:00:00:00:00:02", ip="192.168.1.8", hostname='say "hi"')
        text = MermaidExporter.to_mermaid([tv, box], [])
        assert '00_00_00_00_00_01("tv (living room)")' in text
        assert '00_00_00_00_00_02("say #quot;hi#quot;")' in text
