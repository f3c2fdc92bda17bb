"""Headless runner for the transit simulator.

Loads a preprocessed network and its service definitions, dispatches trains
on every service and advances the fleet, logging train positions.

Example:
    python main.py --infra data/infra.json --services data/services.json \\
        --trains 2 --duration 600 --step 0.5
"""
import argparse
import logging
import sys

from CTC.CTC_backend import FleetManager
from trackModel.route_backend import TrainRoute
from trackModel.track_model_backend import TrackNetwork, load_services
from universal.global_clock import clock
from universal.universal import ConversionFunctions

logger = logging.getLogger("main")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Run the transit simulator without a map front end.")
    parser.add_argument("--infra", required=True,
                        help="Network JSON (node_coords, ways, stations)")
    parser.add_argument("--services", required=True,
                        help="Services JSON ({'services': [...]})")
    parser.add_argument("--rate", type=float, default=1.0,
                        help="Simulation rate multiplier (default 1.0)")
    parser.add_argument("--dwell", type=float, default=FleetManager.DEFAULT_DWELL_S,
                        help="Dwell time at each stop in seconds")
    parser.add_argument("--trains", type=int, default=1,
                        help="Trains dispatched per service, spread along it")
    parser.add_argument("--duration", type=float, default=300.0,
                        help="Simulated seconds to run")
    parser.add_argument("--step", type=float, default=0.5,
                        help="Fixed wall step in seconds; 0 follows the real "
                             "clock")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def build_routes(network: TrackNetwork, services_path: str):
    routes = []
    for service in load_services(services_path):
        route = TrainRoute.from_service(network, service)
        if not route.is_drivable():
            logger.warning("Service %s has no drivable track; skipped",
                           service.bullet or service.name)
            continue
        logger.info("%r with %d stop(s), %d diagnostic(s)", route,
                    len(route.get_cached_stop_positions()),
                    len(route.diagnostics))
        routes.append(route)
    return routes


def dispatch_all(fleet: FleetManager, routes, trains_per_route: int,
                 dwell: float) -> None:
    for route in routes:
        for i in range(max(0, trains_per_route)):
            offset = route.total_distance * i / max(1, trains_per_route)
            fleet.dispatch_train(route, dwell_time=dwell, start_offset_m=offset)


def log_fleet(fleet: FleetManager) -> None:
    for snap in fleet.snapshot():
        if snap.coordinates is None:
            position = "unplaced"
        else:
            position = f"({snap.coordinates[1]:.5f}, {snap.coordinates[0]:.5f})"
        logger.info(
            "t=%7.1fs %-9s way=%-12s %s %5.1f mph%s",
            fleet.elapsed_sim_s, snap.train_id, snap.way_id, position,
            ConversionFunctions.mps_to_mph(snap.velocity),
            f" dwell {snap.remaining_dwell_time:.1f}s" if snap.is_at_stop
            else "")


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        network = TrackNetwork.from_json(args.infra)
        routes = build_routes(network, args.services)
    except (OSError, ValueError) as e:
        logger.error("Failed to load input: %s", e)
        return 1

    fleet = FleetManager(network)
    fleet.set_speed(args.rate)
    dispatch_all(fleet, routes, args.trains, args.dwell)
    if not len(fleet):
        logger.error("No trains could be dispatched")
        return 1

    report_every_s = 10.0
    next_report = 0.0

    if args.step > 0:
        while fleet.elapsed_sim_s < args.duration and len(fleet):
            fleet.tick(args.step)
            if fleet.elapsed_sim_s >= next_report:
                log_fleet(fleet)
                next_report += report_every_s
    else:
        clock.set_speed(args.rate)

        def on_tick(dt, rate):
            nonlocal next_report
            fleet.tick(dt, rate)
            if fleet.elapsed_sim_s >= next_report:
                log_fleet(fleet)
                next_report += report_every_s
            if fleet.elapsed_sim_s >= args.duration or not len(fleet):
                clock.stop()

        clock.register_listener(on_tick)
        # Start from a fresh time base in case the clock ran before
        clock.resume()
        try:
            clock.run()
        finally:
            clock.unregister_listener(on_tick)

    log_fleet(fleet)
    logger.info("Finished after %.1f simulated seconds, %d train(s) running",
                fleet.elapsed_sim_s, len(fleet))
    return 0


if __name__ == "__main__":
    sys.exit(main())
