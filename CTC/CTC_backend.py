"""CTC Backend: fleet control for the transit simulator.

The fleet manager owns every live train, dispatches new ones onto routes,
advances them once per simulation tick and removes them when they run off
the end of their route.

Each tick runs in two phases:
    1. Snapshot every train, then update each train against that
       snapshot list so spacing decisions do not depend on update order.
    2. Move trains that reached the end of their section onto the next
       section and remove the ones whose route is finished.

A failure inside one train's update or section change is logged and
skipped; the rest of the fleet still advances.
"""
import logging
from typing import Callable, Dict, List, Optional

from trackModel.route_backend import TrainRoute
from trackModel.track_model_backend import TrackNetwork
from trainModel.train_model_backend import Train, TrainSnapshot
from universal.universal import KinematicLimits

logger = logging.getLogger(__name__)


class FleetManager:
    """Owns and advances every live train on one network.

    Attributes:
        network: Network the trains run on.
        trains: Train id -> live train, in dispatch order.
        time_multiplier: Default rate applied to every tick.
        elapsed_sim_s: Simulated seconds advanced so far.
        on_train_created: Optional callback ``(train_id, route)``.
        on_train_removed: Optional callback ``(train_id)``.
    """

    DEFAULT_DWELL_S = Train.DEFAULT_DWELL_S

    def __init__(self, network: TrackNetwork,
                 limits: Optional[KinematicLimits] = None) -> None:
        """Initialize an empty fleet.

        Args:
            network: Network every dispatched route is built on.
            limits: Kinematic limits applied to trains dispatched from
                here. Class defaults are used if None.
        """
        self.network = network
        self.limits = limits
        self.trains: Dict[str, Train] = {}
        self.time_multiplier = 1.0
        self.elapsed_sim_s = 0.0
        self._next_train_number = 1

        self.on_train_created: Optional[Callable[[str, TrainRoute], None]] = None
        self.on_train_removed: Optional[Callable[[str], None]] = None

    # ------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------
    def dispatch_train(self, route: TrainRoute,
                       dwell_time: float = DEFAULT_DWELL_S,
                       start_offset_m: float = 0.0) -> Optional[str]:
        """Spawn a train at the start of a route.

        Args:
            route: Route for the new train.
            dwell_time: Seconds the train dwells at each stop.
            start_offset_m: Spawn position along the route in metres.

        Returns:
            The new train id, or None if the network or route cannot carry
            a train.
        """
        if not self.network.has_usable_track():
            logger.warning("Cannot dispatch: network has no usable track")
            return None
        if route is None or not route.is_drivable():
            logger.warning("Cannot dispatch: route %r has no usable sections",
                           route)
            return None

        train_id = f"train-{self._next_train_number}"
        try:
            train = Train(train_id, self.network, route,
                          dwell_time=dwell_time, limits=self.limits,
                          start_offset_m=start_offset_m)
        except ValueError as e:
            logger.warning("Cannot dispatch on route %r: %s", route, e)
            return None

        # Trains leave the origin already powering
        train.acceleration = train.base_acceleration
        self._next_train_number += 1
        self.trains[train_id] = train
        logger.info("Dispatched %s on %r", train_id, route)

        if self.on_train_created is not None:
            self.on_train_created(train_id, route)
        return train_id

    def remove_train(self, train_id: str) -> bool:
        """Remove a train from the fleet.

        Args:
            train_id: ID of the train to remove.

        Returns:
            True if the train existed.
        """
        if self.trains.pop(train_id, None) is None:
            return False
        logger.info("Removed %s", train_id)
        if self.on_train_removed is not None:
            self.on_train_removed(train_id)
        return True

    def reset_all(self) -> None:
        """Remove every train and restart train numbering."""
        self.trains.clear()
        self._next_train_number = 1
        self.elapsed_sim_s = 0.0
        logger.info("Fleet reset")

    # ------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------
    def set_speed(self, multiplier: float) -> None:
        if multiplier < 0:
            multiplier = 0.0
        self.time_multiplier = multiplier

    def tick(self, dt: float, rate: Optional[float] = None) -> List[str]:
        """Advance the whole fleet.

        Args:
            dt: Wall-clock seconds since the previous tick.
            rate: Simulation rate; the fleet default if None. Simulated
                time advanced is ``dt * rate``.

        Returns:
            IDs of the trains removed during this tick.

        Raises:
            ValueError: If ``dt`` or ``rate`` is negative.
        """
        if rate is None:
            rate = self.time_multiplier
        if dt < 0 or rate < 0:
            raise ValueError(f"Negative tick (dt={dt}, rate={rate})")

        sim_dt = dt * rate
        self.elapsed_sim_s += sim_dt
        snapshots = self.snapshot()

        at_section_end: List[Train] = []
        for train in list(self.trains.values()):
            try:
                if train.update(sim_dt, snapshots):
                    at_section_end.append(train)
            except Exception:
                logger.exception("Error updating %s; skipped this tick",
                                 train.train_id)

        finished: List[str] = []
        for train in at_section_end:
            try:
                if not train.move_to_next_section():
                    finished.append(train.train_id)
            except Exception:
                logger.exception("Error moving %s to its next section; "
                                 "skipped this tick", train.train_id)
        for train_id in finished:
            logger.info("%s reached the end of its route", train_id)
            self.remove_train(train_id)
        return finished

    def on_clock_tick(self, dt: float, time_multiplier: float) -> None:
        """Clock listener adapter; see ``SimulationClock.register_listener``."""
        self.tick(dt, time_multiplier)

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------
    def get_train(self, train_id: str) -> Optional[Train]:
        return self.trains.get(train_id)

    def get_trains(self) -> List[Train]:
        return list(self.trains.values())

    def snapshot(self) -> List[TrainSnapshot]:
        """Read-only state of every train, in dispatch order."""
        return [train.snapshot() for train in self.trains.values()]

    def report_state(self) -> Dict[str, object]:
        """Get fleet state as a dictionary.

        Returns:
            Dictionary with elapsed time, train count and per-train state.
        """
        return {
            "elapsed_sim_s": self.elapsed_sim_s,
            "train_count": len(self.trains),
            "trains": [train.report_state() for train in self.trains.values()],
        }

    def __len__(self) -> int:
        return len(self.trains)
