"""
Character-grid rendering of a laid-out topology.

Edges are rasterized with Bresenham's algorithm, thinned out by traffic
strength, and never overwrite another edge or a device cell. Device glyphs
are placed last. Color markup uses the ``[style]ch[/]`` convention
understood by Rich-style terminal renderers.
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, NamedTuple, Optional

from ..models.entities import Connection, ConnectionType, Device

BLANK = " "

STRONG_THRESHOLD = 50
WEAK_THRESHOLD = 10

TYPE_COLORS = {
    ConnectionType.DIRECT_L2: "cyan",
    ConnectionType.ROUTED_L3: "yellow",
    ConnectionType.INTERNET: "orange1",
    ConnectionType.TLS_PEER: "green",
    ConnectionType.UNKNOWN: "grey",
}


class RenderEdge(NamedTuple):
    source: str
    destination: str
    packets: int
    connection_type: ConnectionType = ConnectionType.UNKNOWN

    @classmethod
    def from_connection(cls, conn: Connection) -> "RenderEdge":
        return cls(conn.source.key, conn.destination.key, conn.packet_count, conn.connection_type)


def edge_strength(packets: int) -> int:
    """0 weak, 1 medium, 2 strong."""
    if packets <= WEAK_THRESHOLD:
        return 0
    if packets <= STRONG_THRESHOLD:
        return 1
    return 2


def edge_glyph(packets: int, use_ascii: bool = False) -> str:
    if use_ascii:
        return "."
    return "•" if edge_strength(packets) == 2 else "·"


def edge_style(packets: int, connection_type: ConnectionType) -> str:
    style = TYPE_COLORS.get(connection_type, "grey")
    if packets > STRONG_THRESHOLD:
        style += " bold"
    if packets <= WEAK_THRESHOLD:
        style += " dim"
    return style


def device_glyph(device: Device, now: Optional[float] = None, timeouts=None) -> tuple[str, str]:
    """(glyph, color) for a device."""
    if device.is_tls_peer:
        return "◉", "green"
    if device.is_gateway:
        return ("◆" if device.is_default_gateway else "◇"), "yellow"
    active = device.is_active(now, timeouts)
    if device.is_virtual or not device.is_local:
        return ("◍" if active else "○"), "orange1"
    return ("●" if active else "○"), "cyan"


def strength_glyph(packets: int) -> str:
    """Block glyph for a connection-matrix cell."""
    if packets <= 0:
        return "·"
    if packets <= 5:
        return "░"
    if packets <= 20:
        return "▒"
    if packets <= 50:
        return "▓"
    return "█"


_STRENGTH_COLORS = {"·": "dim", "░": "grey37", "▒": "yellow", "▓": "orange1", "█": "red"}


def strength_markup(packets: int) -> str:
    glyph = strength_glyph(packets)
    return f"[{_STRENGTH_COLORS[glyph]}]{glyph}[/]"


def bresenham(x1: int, y1: int, x2: int, y2: int) -> Iterator[tuple[int, int]]:
    """Cells on the line from (x1, y1) to (x2, y2), both ends included."""
    dx, dy = abs(x2 - x1), abs(y2 - y1)
    sx = 1 if x1 < x2 else -1
    sy = 1 if y1 < y2 else -1
    err = dx - dy
    while True:
        yield x1, y1
        if x1 == x2 and y1 == y2:
            return
        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            x1 += sx
        if e2 < dx:
            err += dx
            y1 += sy


@dataclass
class Grid:
    """A rendered frame: glyphs plus per-cell edge metadata."""
    width: int
    height: int
    cells: list[list[str]] = field(default_factory=list)
    strengths: list[list[int]] = field(default_factory=list)
    types: list[list[ConnectionType]] = field(default_factory=list)
    device_colors: dict[tuple[int, int], str] = field(default_factory=dict)

    @classmethod
    def blank(cls, width: int, height: int) -> "Grid":
        return cls(
            width=width,
            height=height,
            cells=[[BLANK] * width for _ in range(height)],
            strengths=[[0] * width for _ in range(height)],
            types=[[ConnectionType.UNKNOWN] * width for _ in range(height)],
        )

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def lines(self) -> list[str]:
        return ["".join(row) for row in self.cells]

    def markup_lines(self) -> list[str]:
        out = []
        for y, row in enumerate(self.cells):
            parts = []
            for x, ch in enumerate(row):
                color = self.device_colors.get((x, y))
                if color is not None:
                    parts.append(f"[{color}]{ch}[/]")
                elif ch != BLANK:
                    style = edge_style(self.strengths[y][x], self.types[y][x])
                    parts.append(f"[{style}]{ch}[/]")
                else:
                    parts.append(ch)
            out.append("".join(parts))
        return out

    def __str__(self) -> str:
        return "\n".join(self.lines())


class GridRenderer:
    """Draws edges then devices onto a Grid."""

    def __init__(self, use_ascii: bool = False):
        self.use_ascii = use_ascii

    def render(
        self,
        positions: dict[str, tuple[int, int]],
        devices: list[Device],
        edges: Iterable,
        width: int,
        height: int,
        now: Optional[float] = None,
        timeouts=None,
    ) -> Grid:
        """
        Render one frame.

        ``edges`` holds RenderEdge values or plain
        (source, destination, packets, type) tuples. Edges with an endpoint
        missing from ``positions`` are skipped.
        """
        grid = Grid.blank(width, height)
        if width <= 0 or height <= 0:
            return grid

        reserved = {
            positions[d.key] for d in devices
            if d.key in positions and grid.in_bounds(*positions[d.key])
        }

        drawable = [RenderEdge(*e) for e in edges]
        drawable = [
            e for e in drawable
            if e.source in positions and e.destination in positions
        ]
        drawable.sort(key=lambda e: e.packets, reverse=True)

        for tier in (2, 1, 0):
            for edge in drawable:
                if edge_strength(edge.packets) == tier:
                    self._draw_edge(grid, positions, edge, reserved)

        # Earlier devices win shared cells
        for device in reversed(devices):
            if device.key not in positions:
                continue
            x, y = positions[device.key]
            if not grid.in_bounds(x, y):
                continue
            glyph, color = device_glyph(device, now, timeouts)
            grid.cells[y][x] = glyph
            grid.device_colors[(x, y)] = color

        return grid

    def _draw_edge(self, grid: Grid, positions, edge: RenderEdge, reserved: set) -> None:
        x1, y1 = positions[edge.source]
        x2, y2 = positions[edge.destination]
        strength = edge_strength(edge.packets)
        glyph = edge_glyph(edge.packets, self.use_ascii)

        for x, y in bresenham(x1, y1, x2, y2):
            if not grid.in_bounds(x, y) or (x, y) in reserved:
                continue
            if grid.cells[y][x] != BLANK:
                continue
            distance = abs(x - x1) + abs(y - y1)
            if strength == 0 and distance % 3 != 0:
                continue
            if strength == 1 and distance % 2 != 0:
                continue
            grid.cells[y][x] = glyph
            grid.strengths[y][x] = edge.packets
            grid.types[y][x] = edge.connection_type


def connection_matrix(devices: list[Device], connections: Iterable[Connection]) -> list[str]:
    """Rows of intensity glyphs; cell (i, j) is traffic from device i to device j."""
    packets = {c.key: c.packet_count for c in connections}
    rows = []
    for src in devices:
        cells = []
        for dst in devices:
            if src.key == dst.key:
                cells.append(" ")
            else:
                cells.append(strength_glyph(packets.get((src.key, dst.key), 0)))
        rows.append("".join(cells))
    return rows
