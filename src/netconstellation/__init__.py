"""
NetConstellation: live LAN topology model.

Builds an incremental device/connection graph from a capture feed, classifies
links (direct, routed, internet, TLS peer), infers gateways, and lays the
result out as a deterministic force-directed character grid.

License: MIT
"""

__version__ = "0.1.0"
