"""
Force-directed layout onto a character grid.

A fixed-iteration spring simulation: every pair of devices repels, every
connection attracts with a weight that grows with log10 of its packet
count, and gateways pull the other devices toward them. The result is a
pure function of the ordered device list (with gateway flags), the edge
set with packet counts, and the canvas size, which makes it cacheable.
"""

import logging
import threading
from typing import Iterable, Optional

import numpy as np

from ..models.entities import Connection, Device

logger = logging.getLogger(__name__)

Position = tuple[int, int]
EdgeTriple = tuple[str, str, int]

ITERATIONS = 30
REPULSION = 15.0
ATTRACTION = 0.05
PACKET_WEIGHT = 0.15
DAMPING = 0.85
MIN_DISTANCE = 2.5
GATEWAY_GRAVITY = 0.8
DEFAULT_GATEWAY_BOOST = 1.3
# Keeps the squared distance away from zero for coincident devices
_EPSILON = 0.01


def edge_triples(connections: Iterable[Connection]) -> list[EdgeTriple]:
    """(source key, destination key, packets) for each connection."""
    return [
        (c.source.key, c.destination.key, c.packet_count) for c in connections
    ]


class LayoutEngine:
    """Positions devices on a ``width`` x ``height`` grid."""

    def __init__(self, iterations: int = ITERATIONS):
        self.iterations = iterations

    def initial_positions(self, n: int, width: int, height: int) -> np.ndarray:
        """Devices spread evenly on a flattened ellipse around the centre."""
        cx, cy = width // 2, height // 2
        radius = min(width / 6.0, height * 0.7)
        angles = 2 * np.pi * np.arange(n) / n
        return np.column_stack([
            cx + radius * np.cos(angles),
            cy + radius * np.sin(angles) * 0.5,
        ])

    def compute(
        self,
        devices: list[Device],
        edges: Iterable[EdgeTriple],
        width: int,
        height: int,
    ) -> dict[str, Position]:
        n = len(devices)
        if n == 0:
            return {}

        index = {d.key: i for i, d in enumerate(devices)}
        # Canonical edge order makes the float sums reproducible
        links = sorted(
            (index[s], index[d], p) for s, d, p in set(edges)
            if s in index and d in index and s != d
        )
        src = np.array([l[0] for l in links], dtype=int)
        dst = np.array([l[1] for l in links], dtype=int)
        weight = 1.0 + np.log10(1.0 + np.array([l[2] for l in links], dtype=float)) * PACKET_WEIGHT

        is_gateway = np.array([d.is_gateway for d in devices])
        gravity = np.where(
            [d.is_default_gateway for d in devices],
            GATEWAY_GRAVITY * DEFAULT_GATEWAY_BOOST,
            GATEWAY_GRAVITY,
        )
        gateways = np.flatnonzero(is_gateway)
        pulled = np.flatnonzero(~is_gateway)

        # Margins shrink on canvases too small to hold them
        x_lo = min(2.0, max(0.0, width - 1.0))
        y_lo = min(1.0, max(0.0, height - 1.0))
        x_hi, y_hi = max(x_lo, width - 2.0), max(y_lo, height - 1.0)

        pos = self.initial_positions(n, width, height)
        vel = np.zeros_like(pos)
        upper = np.triu(np.ones((n, n), dtype=bool), k=1)

        for _ in range(self.iterations):
            forces = np.zeros_like(pos)

            # Pairwise repulsion, delta[i, j] = pos[j] - pos[i]
            delta = pos[np.newaxis, :, :] - pos[:, np.newaxis, :]
            dist_sq = (delta ** 2).sum(axis=2) + _EPSILON
            dist = np.sqrt(dist_sq)
            magnitude = REPULSION / dist_sq
            magnitude = np.where(dist < MIN_DISTANCE, magnitude * 2.0, magnitude)
            push = delta / dist[:, :, np.newaxis] * magnitude[:, :, np.newaxis]
            push[~upper] = 0.0
            forces -= push.sum(axis=1)
            forces += push.sum(axis=0)

            # Springs along connections
            if len(links):
                d = pos[dst] - pos[src]
                spring = d * (ATTRACTION * weight)[:, np.newaxis]
                np.add.at(forces, src, spring)
                np.add.at(forces, dst, -spring)

            # Gateway gravity on every non-gateway device
            if len(gateways) and len(pulled):
                g = pos[gateways][np.newaxis, :, :] - pos[pulled][:, np.newaxis, :]
                g_dist = np.sqrt((g ** 2).sum(axis=2) + _EPSILON)
                pull = g / g_dist[:, :, np.newaxis] * gravity[gateways][np.newaxis, :, np.newaxis]
                forces[pulled] += pull.sum(axis=1)

            vel = (vel + forces) * DAMPING
            pos = pos + vel
            pos[:, 0] = np.clip(pos[:, 0], x_lo, x_hi)
            pos[:, 1] = np.clip(pos[:, 1], y_lo, y_hi)

        pos = np.clip(pos, [x_lo, y_lo], [x_hi, y_hi])
        cells = np.rint(pos).astype(int)
        return {d.key: (int(cells[i, 0]), int(cells[i, 1])) for i, d in enumerate(devices)}


class LayoutCache:
    """
    Memoizes the most recent layout.

    Guarded by its own lock, independent of the graph store. The simulation
    itself runs outside the lock; concurrent misses may both compute, and
    the last one stored wins.
    """

    def __init__(self, engine: Optional[LayoutEngine] = None):
        self.engine = engine or LayoutEngine()
        self._lock = threading.Lock()
        self._key = None
        self._positions: dict[str, Position] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def cache_key(devices: list[Device], edges: Iterable[EdgeTriple], width: int, height: int):
        return (
            tuple((d.key, d.is_gateway, d.is_default_gateway) for d in devices),
            frozenset(edges),
            (width, height),
        )

    def get_positions(
        self,
        devices: list[Device],
        edges: Iterable[EdgeTriple],
        width: int,
        height: int,
    ) -> dict[str, Position]:
        edges = list(edges)
        key = self.cache_key(devices, edges, width, height)
        with self._lock:
            if key == self._key:
                self.hits += 1
                return dict(self._positions)
            self.misses += 1

        positions = self.engine.compute(devices, edges, width, height)
        logger.debug("Computed layout for %d devices on %dx%d", len(devices), width, height)

        with self._lock:
            self._key = key
            self._positions = positions
        return dict(positions)

    def invalidate(self) -> None:
        with self._lock:
            self._key = None
            self._positions = {}
