"""
NetConstellation CLI: drive the topology model from the command line.

Commands:
  demo      Feed a synthetic network through the pipeline and draw it
  dot       Export the synthetic network as DOT, D3 JSON or Mermaid
  gateways  Show the host routing table and the detected default gateway
"""

import json
import logging
import sys
import time

try:
    import click
except ImportError:
    print("Click is required: pip install click")
    sys.exit(1)

from . import __version__
from .config import MonitorConfig
from .ingest.capture import SyntheticCaptureFeed
from .ingest.gateway import GatewayDetector, ProcNetRouteSource, Route, StaticRoutingTable
from .monitor import TopologyMonitor


@click.group()
@click.version_option(version=__version__, prog_name="netconstellation")
@click.option("--verbose", "-v", is_flag=True, help="Log to stderr at DEBUG level")
def cli(verbose):
    """NetConstellation: live LAN topology model."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_demo_monitor(seed: int, config_path, now: float) -> TopologyMonitor:
    """Monitor fed from the synthetic network, with one maintenance tick applied."""
    config = MonitorConfig.load(config_path)
    feed = SyntheticCaptureFeed(seed=seed, now=now)
    routing = StaticRoutingTable([Route(feed.gateway_ip, "0.0.0.0", "0.0.0.0")])
    monitor = TopologyMonitor(config, detector=GatewayDetector(routing))
    monitor.ingest(feed)
    monitor.tick(now)
    return monitor


@cli.command()
@click.option("--seed", "-s", default=7, help="Synthetic network seed")
@click.option("--width", "-w", default=60, help="Grid width in cells")
@click.option("--height", "-h", "height", default=20, help="Grid height in cells")
@click.option("--ascii", "use_ascii", is_flag=True, help="Draw edges with plain dots")
@click.option("--markup", is_flag=True, help="Emit [style]ch[/] color markup")
@click.option("--config", "-c", "config_path", default=None, help="JSON config file")
def demo(seed, width, height, use_ascii, markup, config_path):
    """Run the pipeline on a synthetic network and print the topology."""
    from .viz.grid import connection_matrix

    now = time.time()
    monitor = _build_demo_monitor(seed, config_path, now)
    if use_ascii:
        monitor.renderer.use_ascii = True

    click.echo("=" * width)
    click.echo("  NetConstellation Demo")
    click.echo("=" * width)

    grid = monitor.render(width, height, now=now)
    for line in (grid.markup_lines() if markup else grid.lines()):
        click.echo(line)

    click.echo("")
    click.echo(str(monitor.statistics(now)))

    report = monitor.resilience(now)
    click.echo(
        f"Vertex cut: {report.vertex_cut} | Components: {report.components} | "
        f"MST edges: {report.mst_edges}"
    )
    if report.articulation_points:
        click.echo(f"Single points of failure: {', '.join(report.articulation_points)}")

    devices = monitor.display_devices(now)
    click.echo("\nConnection matrix:")
    for device, row in zip(devices, connection_matrix(devices, monitor.store.get_all_connections())):
        click.echo(f"  {device.display_name[:16]:<16} {row}")


@cli.command()
@click.option("--seed", "-s", default=7, help="Synthetic network seed")
@click.option("--format", "-f", type=click.Choice(["dot", "d3", "mermaid"]), default="dot")
@click.option("--output", "-o", default=None, help="Write to file instead of stdout")
def dot(seed, format, output):
    """Export the synthetic network graph."""
    from .viz.export import D3Exporter, MermaidExporter

    now = time.time()
    monitor = _build_demo_monitor(seed, None, now)
    devices = monitor.store.get_all_devices()
    connections = monitor.store.get_all_connections()

    if format == "dot":
        text = monitor.store.export_to_dot()
    elif format == "d3":
        text = json.dumps(D3Exporter.to_d3_json(devices, connections), indent=2, default=str)
    else:
        text = MermaidExporter.to_mermaid(devices, connections, title="NetConstellation")

    if output:
        with open(output, "w") as f:
            f.write(text)
        click.echo(f"Exported to {output}")
    else:
        click.echo(text, nl=False if text.endswith("\n") else True)


@cli.command()
@click.option("--route-file", default="/proc/net/route", help="Routing table in /proc/net/route format")
def gateways(route_file):
    """Show gateway routes and the default gateway."""
    detector = GatewayDetector(ProcNetRouteSource(route_file))
    routes = detector.get_routing_table()
    if not routes:
        click.echo("No gateway routes found.")
    for route in routes:
        click.echo(f"  {route.cidr:<18} via {route.gateway:<15} dev {route.interface} metric {route.metric}")

    default = detector.detect_default_gateway()
    click.echo(f"Default gateway: {default or 'unknown'}")


if __name__ == "__main__":
    cli()
