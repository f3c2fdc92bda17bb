"""Train Model Backend
"""
import itertools
import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from trackModel.geodesy import Coordinate
from trackModel.route_backend import TrackSection, TrainRoute
from trackModel.track_model_backend import TrackNetwork
from universal.universal import KinematicLimits, TrainState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainSnapshot:
    """Read-only view of a train taken before a tick.

    Every train update within one tick reads the same list of snapshots,
    so spacing decisions do not depend on update order.

    Attributes:
        train_id: Train identifier.
        way_id: Way of the section the train occupies.
        section_index: Index of that section in the train's route.
        is_reversed: Whether that section walks its way backward.
        distance_along: Distance from the section start in metres.
        way_position: Direction-of-travel position on the way in metres;
            comparable between trains on the same way and direction.
        dispatch_order: Creation order; the earlier train leads on a tie.
        route_position: Distance from the route start in metres.
        coordinates: ``(longitude, latitude)``, None if not placeable.
        bearing: Heading in radians.
        velocity: Speed in m/s.
        acceleration: Acceleration in m/s^2.
        state: Motion state.
        remaining_dwell_time: Seconds left at the current stop.
    """
    train_id: str
    way_id: str
    section_index: int
    is_reversed: bool
    distance_along: float
    way_position: float
    dispatch_order: int
    route_position: float
    coordinates: Optional[Coordinate]
    bearing: float
    velocity: float
    acceleration: float
    state: TrainState
    remaining_dwell_time: float

    @property
    def is_at_stop(self) -> bool:
        return self.state == TrainState.DWELLING


@dataclass
class AccelerationCandidates:
    """Named acceleration constraints; the most restrictive one wins.

    Attributes:
        base: Powering up towards cruise; always present.
        speed_cap: Zero once maximum speed is reached.
        brake: Service braking for a train inside braking distance.
        emergency_brake: Emergency braking for a train inside emergency
            braking distance.
        stop_approach: Rate that brings the train to rest at the next stop.
    """
    base: float
    speed_cap: Optional[float] = None
    brake: Optional[float] = None
    emergency_brake: Optional[float] = None
    stop_approach: Optional[float] = None

    def present(self) -> List[float]:
        return [value for value in (self.base, self.speed_cap, self.brake,
                                    self.emergency_brake, self.stop_approach)
                if value is not None]

    def resolve(self) -> float:
        return min(self.present())


class Train:
    """Point-mass train following a fixed route.

    Attributes:
        train_id: String identifier for this train.
        network: Network the route is built on.
        route: Route this train follows.
        section_index: Index of the occupied section in the route.
        way_section: The occupied section.
        distance_along: Position within the section in metres.
        route_position: Position along the whole route in metres.
        velocity: Current velocity in m/s.
        acceleration: Current acceleration in m/s^2.
        coordinates: Current ``(longitude, latitude)``.
        bearing: Current heading in radians.
        state: MOVING or DWELLING.
        remaining_dwell_time: Seconds left at the current stop.
        last_stop_node_id: Stop most recently served; not re-triggered.
        dispatch_order: Creation order, used to break spacing ties.
    """

    # Performance limits (SI units)
    BASE_ACCELERATION = 1.0  # m/s^2
    BASE_DECELERATION = 2.0  # m/s^2 service brake
    EMERGENCY_DECELERATION = 5.0  # m/s^2
    MAX_SPEED = 60 * 0.44704  # m/s (60 mph)

    # Stop handling
    DEFAULT_DWELL_S = 10.0
    STOP_TOLERANCE_M = 5.0
    STOP_APPROACH_STEP = 0.5  # m/s^2 easing towards cruise near a stop

    # Spacing
    MIN_SEPARATION_M = 1.0
    POSITION_TOLERANCE_M = 1e-6  # way positions closer than this are level

    _dispatch_counter = itertools.count()

    def __init__(self, train_id: str, network: TrackNetwork,
                 route: TrainRoute, dwell_time: float = DEFAULT_DWELL_S,
                 limits: Optional[KinematicLimits] = None,
                 start_offset_m: float = 0.0) -> None:
        """Initialize a train on its route.

        Args:
            train_id: Unique identifier for this train.
            network: Network the route is built on.
            route: Route to follow.
            dwell_time: Seconds spent at every stop.
            limits: Overrides for the class performance limits.
            start_offset_m: Spawn position along the route in metres.

        Raises:
            ValueError: If the route has no sections or the offset is not
                on the route.
        """
        if len(route) == 0:
            raise ValueError(f"Route {route!r} has no sections.")

        self.train_id = train_id
        self.network = network
        self.route = route
        self.dispatch_order = next(Train._dispatch_counter)

        limits = limits or KinematicLimits(
            base_acceleration=self.BASE_ACCELERATION,
            base_deceleration=self.BASE_DECELERATION,
            emergency_deceleration=self.EMERGENCY_DECELERATION,
            max_speed=self.MAX_SPEED,
        )
        self.base_acceleration = limits.base_acceleration
        self.base_deceleration = limits.base_deceleration
        self.emergency_deceleration = limits.emergency_deceleration
        self.max_speed = limits.max_speed

        if start_offset_m > 0:
            located = route.get_section_position(start_offset_m)
            if located is None:
                raise ValueError(
                    f"Offset {start_offset_m:.1f}m is not on route {route!r}.")
            self.section_index, self.distance_along = located
        else:
            self.section_index, self.distance_along = 0, 0.0
        self.way_section: TrackSection = route.way_sections[self.section_index]
        self.route_position = route.get_route_position(
            self.section_index, self.distance_along)

        # Dynamics state
        self.velocity: float = 0.0
        self.acceleration: float = 0.0
        self.coordinates: Optional[Coordinate] = None
        self.bearing: float = 0.0

        # Stop state
        self.state = TrainState.MOVING
        self.dwell_time = float(dwell_time)
        self.remaining_dwell_time: float = 0.0
        self.last_stop_node_id: Optional[str] = None

        self._degenerate_sections_reported: set = set()
        self._update_coordinates()

    @property
    def is_at_stop(self) -> bool:
        return self.state == TrainState.DWELLING

    # ------------------------------------------------------------
    # Per-tick update
    # ------------------------------------------------------------
    def update(self, dt: float,
               others: Sequence[TrainSnapshot] = ()) -> bool:
        """Advance the train by ``dt`` seconds.

        Args:
            dt: Elapsed simulated time in seconds (non-negative).
            others: Pre-tick snapshots of every train in the fleet.

        Returns:
            True if the train has reached the end of its current section.
        """
        if self.state == TrainState.DWELLING:
            self.remaining_dwell_time -= dt
            if self.remaining_dwell_time > 0:
                return False
            # Departure; motion resumes on the next tick
            self.state = TrainState.MOVING
            self.remaining_dwell_time = 0.0
            logger.debug("Train %s departing stop %s",
                         self.train_id, self.last_stop_node_id)
            return False

        distance_to_train_ahead = self.distance_to_train_ahead(others)
        distance_to_next_stop, next_stop_node_id = self.distance_to_next_stop()

        candidates = self.acceleration_candidates(distance_to_train_ahead,
                                                  distance_to_next_stop)
        self.acceleration = candidates.resolve()

        self.velocity = max(0.0, self.velocity + self.acceleration * dt)

        # Never close in on the train ahead past the minimum separation
        distance_to_move = self.velocity * dt
        allowed = distance_to_train_ahead - self.MIN_SEPARATION_M
        if distance_to_move > allowed:
            distance_to_move = max(0.0, allowed)
            self.velocity = 0.0
            self.acceleration = 0.0
            logger.debug("Train %s held behind train ahead (gap %.2fm)",
                         self.train_id, distance_to_train_ahead)

        self.distance_along += distance_to_move
        self.route_position += distance_to_move

        remaining_to_stop = distance_to_next_stop - distance_to_move
        if (next_stop_node_id is not None and
                remaining_to_stop <= self.STOP_TOLERANCE_M):
            self.state = TrainState.DWELLING
            self.last_stop_node_id = next_stop_node_id
            self.remaining_dwell_time = self.dwell_time
            self.velocity = 0.0
            self.acceleration = 0.0
            logger.debug("Train %s stopped at %s (%.2fm short)",
                         self.train_id, next_stop_node_id, remaining_to_stop)

        self._update_coordinates()
        return self.has_reached_end()

    def acceleration_candidates(self, distance_to_train_ahead: float,
                                distance_to_next_stop: float
                                ) -> AccelerationCandidates:
        """Collect every acceleration constraint for the current state.

        Args:
            distance_to_train_ahead: Gap to the train ahead in metres
                (``math.inf`` if none).
            distance_to_next_stop: Gap to the next stop in metres
                (``math.inf`` if none).

        Returns:
            The candidate set; ``resolve()`` gives the applied value.
        """
        v = self.velocity
        braking_distance = v * v / (2 * self.base_deceleration)
        emergency_braking_distance = v * v / (2 * self.emergency_deceleration)

        candidates = AccelerationCandidates(base=self.base_acceleration)
        if v >= self.max_speed:
            candidates.speed_cap = 0.0
        if distance_to_train_ahead <= braking_distance:
            candidates.brake = -self.base_deceleration
        if distance_to_train_ahead <= emergency_braking_distance:
            candidates.emergency_brake = -self.emergency_deceleration

        if math.isfinite(distance_to_next_stop) and v > 0:
            # v^2 = u^2 + 2as with v = 0
            if distance_to_next_stop <= 0:
                required = -self.emergency_deceleration
            else:
                required = -(v * v) / (2 * distance_to_next_stop)

            if required > -self.base_deceleration:
                candidates.stop_approach = min(
                    self.base_acceleration,
                    self.acceleration + self.STOP_APPROACH_STEP)
            elif required <= -self.emergency_deceleration:
                candidates.stop_approach = -self.emergency_deceleration
            else:
                candidates.stop_approach = required
        return candidates

    def distance_to_train_ahead(self,
                                others: Sequence[TrainSnapshot]) -> float:
        """Gap to the nearest train ahead on this train's remaining route.

        A train counts as occupying a section when it is on the same way in
        the same direction and its way position falls inside the stretch
        of way the section covers. Positions are compared on the way, so
        routes that enter a way at different nodes still see each other.
        On the current section only trains further along count; a train
        level with this one counts if it was dispatched earlier.

        Args:
            others: Pre-tick snapshots of the fleet.

        Returns:
            Gap in metres, or ``math.inf`` if no train is ahead.
        """
        tolerance = self.POSITION_TOLERANCE_M
        sections = self.route.way_sections
        cumulative = 0.0
        for i in range(self.section_index, len(sections)):
            section = sections[i]
            section_length = section.get_distance()
            if section_length == 0:
                continue

            on_current = i == self.section_index
            entry = section.way_position(
                self.distance_along if on_current else 0.0)
            exit_position = section.way_position(section_length)

            closest = math.inf
            for other in others:
                if (other.train_id == self.train_id or
                        other.way_id != section.way_id or
                        other.is_reversed != section.is_reversed):
                    continue
                position = other.way_position
                if position > exit_position + tolerance:
                    continue
                if on_current and abs(position - entry) <= tolerance:
                    if other.dispatch_order > self.dispatch_order:
                        continue
                elif position < entry - tolerance:
                    continue
                closest = min(closest, cumulative + max(0.0, position - entry))
            if closest != math.inf:
                return closest

            if i == self.section_index:
                cumulative += max(0.0, section_length - self.distance_along)
            else:
                cumulative += section_length
        return math.inf

    def distance_to_next_stop(self) -> Tuple[float, Optional[str]]:
        """Gap to the next stop not just departed from.

        Returns:
            ``(distance_m, stop_node_id)``; ``(math.inf, None)`` if no stop
            lies ahead.
        """
        next_stop = self.route.get_next_stop_ahead(self.route_position,
                                                   self.last_stop_node_id)
        if next_stop is None:
            return math.inf, None
        return next_stop.distance, next_stop.node_id

    # ------------------------------------------------------------
    # Section handling
    # ------------------------------------------------------------
    def has_reached_end(self) -> bool:
        """True once the train is at or past the end of its section."""
        return self.distance_along >= self.way_section.get_distance()

    def move_to_next_section(self) -> bool:
        """Enter the next section of the route.

        Returns:
            True if the train moved on, False if the route is finished.
        """
        next_index = self.section_index + 1
        if next_index >= len(self.route.way_sections):
            return False

        self.section_index = next_index
        self.way_section = self.route.way_sections[next_index]
        self.distance_along = 0.0
        self.route_position = self.route.get_route_position(next_index, 0.0)
        self._update_coordinates()
        logger.debug("Train %s entered way %s",
                     self.train_id, self.way_section.way_id)
        return True

    def _update_coordinates(self) -> None:
        """Place the train on the current section's polyline."""
        coords, heading = self.way_section.locate(self.distance_along)
        if coords is None:
            if self.section_index not in self._degenerate_sections_reported:
                self._degenerate_sections_reported.add(self.section_index)
                logger.warning(
                    "Train %s on way %s has no usable geometry; position "
                    "undefined", self.train_id, self.way_section.way_id)
            self.coordinates = None
            return
        self.coordinates = coords
        self.bearing = heading

    # ------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------
    def snapshot(self) -> TrainSnapshot:
        return TrainSnapshot(
            train_id=self.train_id,
            way_id=self.way_section.way_id,
            section_index=self.section_index,
            is_reversed=self.way_section.is_reversed,
            distance_along=self.distance_along,
            way_position=self.way_section.way_position(self.distance_along),
            dispatch_order=self.dispatch_order,
            route_position=self.route_position,
            coordinates=self.coordinates,
            bearing=self.bearing,
            velocity=self.velocity,
            acceleration=self.acceleration,
            state=self.state,
            remaining_dwell_time=self.remaining_dwell_time,
        )

    def report_state(self) -> Dict[str, object]:
        """Get complete train state as dictionary.

        Returns:
            Dictionary containing all train state variables.
        """
        state = asdict(self.snapshot())
        state["state"] = self.state.value
        state["is_at_stop"] = self.is_at_stop
        state["route"] = self.route.bullet or self.route.name
        return state

    def __repr__(self) -> str:
        return (f"Train({self.train_id}, way={self.way_section.way_id}, "
                f"pos={self.route_position:.1f}m, v={self.velocity:.2f}m/s)")
