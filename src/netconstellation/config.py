"""
Runtime configuration.

Plain dataclasses with JSON load/save. A missing file yields defaults; a
corrupt one yields defaults plus a warning, never an exception.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Optional

from .models import entities

logger = logging.getLogger(__name__)


@dataclass
class DisplayConfig:
    """Rendering knobs."""
    # Edges below this packet count are hidden unless MST, gateway or peer
    min_edge_strength: int = 10
    use_ascii: bool = False
    max_display_devices: int = 15


@dataclass
class TimeoutConfig:
    """Activity windows in seconds."""
    gateway: float = entities.GATEWAY_TIMEOUT
    peer: float = entities.PEER_TIMEOUT
    local: float = entities.LOCAL_TIMEOUT
    remote: float = entities.REMOTE_TIMEOUT
    connection: float = entities.CONNECTION_ACTIVE_WINDOW
    rate_window: float = entities.RATE_WINDOW
    cleanup_grace: float = 120.0


@dataclass
class AnalysisConfig:
    ttl_refinement: bool = False


@dataclass
class FilterConfig:
    """Which discovery records the capture bridge drops before the store."""
    filter_loopback: bool = True
    filter_broadcast: bool = True
    filter_multicast: bool = True
    filter_link_local: bool = True
    filter_reserved: bool = True
    filter_utility_macs: bool = True
    filter_non_local: bool = False


@dataclass
class MonitorConfig:
    display: DisplayConfig = field(default_factory=DisplayConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorConfig":
        """Build from a nested dict, ignoring unknown sections and keys."""
        sections = {}
        for f in fields(cls):
            section_cls = f.default_factory
            raw = data.get(f.name) or {}
            known = {sf.name for sf in fields(section_cls)}
            sections[f.name] = section_cls(
                **{k: v for k, v in raw.items() if k in known}
            )
        return cls(**sections)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def load(cls, path: Optional[str]) -> "MonitorConfig":
        if not path or not os.path.exists(path):
            return cls()
        try:
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level JSON value must be an object")
            return cls.from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Failed to load config %s, using defaults: %s", path, exc)
            return cls()

    def save(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
