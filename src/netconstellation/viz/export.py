"""
Textual exports of the topology graph.

DOT ("source -> dest [label]") for external graph tools, D3.js force-layout
JSON with optional precomputed grid positions, and Mermaid diagram syntax.
"""

import json
import re
from typing import Iterable, Optional

from ..models.entities import Connection, Device, DeviceKind


def _dot_quote(text: str) -> str:
    return '"' + str(text).replace("\\", "\\\\").replace('"', '\\"') + '"'


_DOT_ID = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_DOT_KEYWORDS = {"node", "edge", "graph", "digraph", "subgraph", "strict"}


def _dot_id(name: str) -> str:
    """Bare DOT identifier when possible, quoted string otherwise."""
    if _DOT_ID.match(name) and name.lower() not in _DOT_KEYWORDS:
        return name
    return _dot_quote(name)


def _edge_label(conn: Connection) -> str:
    label = conn.protocol or "Unknown"
    if conn.dst_port is not None:
        label += f":{conn.dst_port}"
    return label


class DotExporter:
    """Graphviz DOT output."""

    @staticmethod
    def to_dot(
        devices: Iterable[Device],
        connections: Iterable[Connection],
        name: str = "NetConstellation",
    ) -> str:
        lines = [f"digraph {_dot_id(name)} {{"]
        for device in devices:
            label = device.device_name or device.hostname or device.ip or device.key
            lines.append(f"  {_dot_quote(device.key)} [label={_dot_quote(label)}];")
        for conn in connections:
            lines.append(
                f"  {_dot_quote(conn.source.key)} -> {_dot_quote(conn.destination.key)}"
                f" [label={_dot_quote(_edge_label(conn))}];"
            )
        lines.append("}")
        return "\n".join(lines) + "\n"

    @staticmethod
    def save(filepath: str, devices, connections, **kwargs):
        with open(filepath, "w") as f:
            f.write(DotExporter.to_dot(devices, connections, **kwargs))


class D3Exporter:
    """Export a snapshot to D3.js force-directed JSON format."""

    @staticmethod
    def to_d3_json(
        devices: list[Device],
        connections: list[Connection],
        positions: Optional[dict] = None,
    ) -> dict:
        """
        Convert a snapshot to D3.js node/link JSON.

        Links whose endpoints are not among ``devices`` are skipped. When
        ``positions`` (key -> (x, y)) is given, nodes carry fixed fx/fy.
        """
        node_map = {d.key: i for i, d in enumerate(devices)}

        nodes = []
        for device in devices:
            d = {
                "id": device.key,
                "index": node_map[device.key],
                "label": device.display_name,
                "ip": device.ip,
                "group": device.kind.value,
                "gateway": device.is_gateway,
            }
            if positions and device.key in positions:
                d["fx"], d["fy"] = positions[device.key]
            nodes.append(d)

        links = []
        for conn in connections:
            if conn.source.key not in node_map or conn.destination.key not in node_map:
                continue
            links.append({
                "source": node_map[conn.source.key],
                "target": node_map[conn.destination.key],
                "protocol": conn.protocol,
                "dst_port": conn.dst_port,
                "packets": conn.packet_count,
                "bytes": conn.bytes_transferred,
                "type": conn.connection_type.name,
            })

        return {"nodes": nodes, "links": links}

    @staticmethod
    def save(filepath: str, devices, connections, **kwargs):
        data = D3Exporter.to_d3_json(devices, connections, **kwargs)
        with open(filepath, "w") as f:
            json.dump(data, f, indent=2, default=str)


class MermaidExporter:
    """Export a snapshot to Mermaid diagram syntax."""

    @staticmethod
    def to_mermaid(
        devices: list[Device],
        connections: list[Connection],
        direction: str = "TB",
        title: str = "",
    ) -> str:
        lines = [f"graph {direction}"]
        if title:
            lines.insert(0, f"---\ntitle: {title}\n---")

        safe = {d.key: _mermaid_safe(d.key) for d in devices}

        # Gateways as rhombus, remote hosts as circles, the rest rounded
        for device in devices:
            name = safe[device.key]
            label = _mermaid_label(device.display_name)
            if device.kind is DeviceKind.GATEWAY:
                lines.append(f"    {name}{{{label}}}")
            elif device.kind is DeviceKind.REMOTE:
                lines.append(f"    {name}(({label}))")
            else:
                lines.append(f"    {name}({label})")

        for conn in connections:
            u = safe.get(conn.source.key)
            v = safe.get(conn.destination.key)
            if u is None or v is None:
                continue
            lines.append(f"    {u} -- {_mermaid_label(_edge_label(conn))} --> {v}")

        return "\n".join(lines)


def _mermaid_safe(name: str) -> str:
    """Make a string safe for use as a Mermaid node ID."""
    return "".join(c if c.isalnum() or c == "_" else "_" for c in str(name))


def _mermaid_label(text: str) -> str:
    """Quoted Mermaid node text; embedded quotes become entity codes."""
    return '"' + str(text).replace('"', "#quot;") + '"'
