"""Command line drivers.

``pylivetrack-simulate [vehicle_id] [tick_interval_seconds]`` routes a vehicle
and publishes its simulated position every tick until it reaches the
drop-off.  ``pylivetrack-watch vehicle_id`` subscribes to a vehicle and
prints updates and staleness.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from pylivetrack._constants import DEFAULT_CLI_VEHICLE_ID, DEFAULT_TICK_INTERVAL_SECONDS
from pylivetrack.client import TrackingClient
from pylivetrack.config import TrackerConfig
from pylivetrack.exceptions import ChannelUnavailableError, TrackingError
from pylivetrack.models import LocationUpdate
from pylivetrack.simulator import PositionSimulator

_logger = logging.getLogger(__name__)

#: Shah Alam logistics hub -> Kuala Lumpur mail centre.
DEFAULT_ORIGIN = "101.5270,3.0520"
DEFAULT_DESTINATION = "101.6931,3.1445"


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def resolve_tick_interval(raw: str | None) -> float:
    """Parse the positional tick interval, falling back to the default."""
    if raw is None:
        return DEFAULT_TICK_INTERVAL_SECONDS
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value <= 0 or value != value:
        _logger.warning(
            "Invalid update interval %r, using default %g seconds.",
            raw,
            DEFAULT_TICK_INTERVAL_SECONDS,
        )
        return DEFAULT_TICK_INTERVAL_SECONDS
    return value


def build_simulate_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pylivetrack-simulate",
        description="Simulate a vehicle driving its route and publish live positions.",
    )
    parser.add_argument("vehicle_id", nargs="?", default=DEFAULT_CLI_VEHICLE_ID, help="Vehicle or shipment id")
    parser.add_argument("tick_interval", nargs="?", default=None, help="Seconds between ticks (default: 5)")
    parser.add_argument("--origin", default=DEFAULT_ORIGIN, help="'lon,lat' or a free-text address")
    parser.add_argument("--destination", default=DEFAULT_DESTINATION, help="'lon,lat' or a free-text address")
    parser.add_argument("--speed-kph", type=float, default=None, help="Simulated speed (default: config)")
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    parser.add_argument("--publish-mqtt", action="store_true", help="Publish updates to the MQTT broker")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def build_watch_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pylivetrack-watch",
        description="Subscribe to a vehicle and print its live positions.",
    )
    parser.add_argument("vehicle_id", help="Vehicle or shipment id")
    parser.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def format_update(update: LocationUpdate) -> str:
    heading = f"{update.heading:6.1f}" if update.heading is not None else "     -"
    speed = f"{update.speed:5.1f}" if update.speed is not None else "    -"
    return (
        f"{update.vehicle_id} ts={update.timestamp} "
        f"lat={update.latitude:.6f} lon={update.longitude:.6f} heading={heading} speed={speed}m/s"
    )


async def run_simulate(args: argparse.Namespace, config: TrackerConfig) -> int:
    arrived = asyncio.Event()

    def on_arrival(simulator: PositionSimulator) -> None:
        print(f"{simulator.vehicle_id} arrived at drop-off ({simulator.machine.state})")
        arrived.set()

    async with TrackingClient(config, publish_mqtt=args.publish_mqtt, on_arrival=on_arrival) as client:
        client.channel.add_sink(lambda update: print(format_update(update)))
        try:
            simulator = await client.start_simulation(
                args.vehicle_id,
                args.origin,
                args.destination,
                speed_kph=args.speed_kph,
            )
        except TrackingError as exc:
            _logger.error("Cannot start simulation for %s: %s", args.vehicle_id, exc)
            return 1

        print(
            f"Targeting {args.vehicle_id}: {simulator.route.total_distance_meters:.0f} m, "
            f"tick {config.tick_interval:g}s, ETA {simulator.remaining_seconds:.0f}s"
        )
        client.start()
        try:
            await asyncio.wait_for(arrived.wait(), timeout=args.duration)
        except asyncio.TimeoutError:
            print(f"Stopping after {args.duration:g}s at {simulator.progress:.1%} of the route")
        await client.stop()
    return 0


async def run_watch(args: argparse.Namespace, config: TrackerConfig) -> int:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + args.duration if args.duration else None

    def on_stale_change(stale: bool) -> None:
        print(f"{args.vehicle_id}: {'stale' if stale else 'live'}")

    async with TrackingClient(config) as client:
        async with client.tracking_session(on_stale_change=on_stale_change) as session:
            async with session.track(args.vehicle_id) as subscription:
                print(f"Watching {args.vehicle_id} via {subscription.transport}")
                while deadline is None or loop.time() < deadline:
                    try:
                        update = await subscription.next_update(timeout=config.stale_check_interval)
                    except ChannelUnavailableError as exc:
                        _logger.error("%s", exc)
                        return 1
                    if update is not None:
                        print(format_update(update))
                    else:
                        session.check_staleness()
                        print(f"{args.vehicle_id}: {session.display_state}")
    return 0


def build_simulate_config(args: argparse.Namespace) -> TrackerConfig:
    """Environment configuration with the command line applied on top.

    The tick interval comes from ``LIVETRACK_TICK_INTERVAL`` unless given
    positionally.
    """
    overrides: dict[str, object] = {}
    if args.tick_interval is not None:
        overrides["tick_interval"] = resolve_tick_interval(args.tick_interval)
    if args.publish_mqtt:
        overrides["mqtt_enabled"] = True
    return TrackerConfig.from_env(**overrides).validate()


def main_simulate(argv: Sequence[str] | None = None) -> int:
    args = build_simulate_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        config = build_simulate_config(args)
    except TrackingError as exc:
        _logger.error("Invalid configuration: %s", exc)
        return 2
    try:
        return asyncio.run(run_simulate(args, config))
    except KeyboardInterrupt:
        print("\nDone.")
        return 0


def main_watch(argv: Sequence[str] | None = None) -> int:
    args = build_watch_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        config = TrackerConfig.from_env().validate()
    except TrackingError as exc:
        _logger.error("Invalid configuration: %s", exc)
        return 2
    try:
        return asyncio.run(run_watch(args, config))
    except KeyboardInterrupt:
        print("\nDone.")
        return 0


if __name__ == "__main__":
    sys.exit(main_simulate())
