"""
Route Backend

Track sections (oriented slices of one way) and train routes (continuous
chains of sections with projected stop positions).
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from trackModel.geodesy import (
    Coordinate,
    bearing,
    bracketing_index,
    cumulative_lengths,
    nearest_point_on_line,
    point_along,
    polyline_length,
)
from trackModel.track_model_backend import TrackNetwork
from universal.universal import (
    DiagnosticKind,
    RouteDiagnostic,
    ServiceDefinition,
    UserRouteRecord,
)

logger = logging.getLogger(__name__)


class UnresolvableSectionError(ValueError):
    """Raised when a track section cannot be built from the network."""


def find_common_node(a: Sequence[str], b: Sequence[str]) -> Optional[str]:
    """First node id of ``a`` that also appears in ``b``, or None."""
    members = set(b)
    for node_id in a:
        if node_id in members:
            return node_id
    return None


class TrackSection:
    """Oriented, possibly partial slice of one way between two nodes.

    Computed once on construction and never mutated; a change of endpoints
    requires a new section.

    Attributes:
        way_id: ID of the backing way.
        start_node_id: Node the section starts at.
        end_node_id: Node the section ends at.
        is_reversed: Whether the section walks the way last-to-first.
        direction_warning: Set when a unidirectional way is walked in
            reverse. The section is still built.
        missing_node_ids: Node ids of the slice without coordinates.
        way_offset: Position of the section start on its way, in metres
            from the way's first node, negated for reversed sections.
            ``way_offset + distance`` grows in the direction of travel, so
            positions on sections of the same way and direction compare
            directly.
    """

    def __init__(self, network: TrackNetwork, way_id: str,
                 start_node_id: Optional[str] = None,
                 end_node_id: Optional[str] = None) -> None:
        """Initialize a track section.

        Args:
            network: Network the way belongs to.
            way_id: ID of the way to slice.
            start_node_id: First node of the slice. Defaults to the way's
                first node.
            end_node_id: Last node of the slice. Defaults to the way's last
                node.

        Raises:
            UnresolvableSectionError: If the way does not exist, an
                endpoint is not on the way, or the slice has fewer than 2
                nodes.
        """
        self.way_id = way_id
        way = network.get_way(way_id)
        if way is None:
            raise UnresolvableSectionError(f"Way not found: {way_id}")
        if not way.nodes:
            raise UnresolvableSectionError(f"Way {way_id} has no nodes")

        self.start_node_id = start_node_id or way.nodes[0]
        self.end_node_id = end_node_id or way.nodes[-1]

        if (self.start_node_id not in way.nodes or
                self.end_node_id not in way.nodes):
            raise UnresolvableSectionError(
                f"Start or end node not found in way {way_id}: "
                f"{self.start_node_id}, {self.end_node_id}")

        start_index = way.nodes.index(self.start_node_id)
        if self.start_node_id == self.end_node_id:
            # Closed loop ways list the same node first and last
            end_index = len(way.nodes) - 1 - way.nodes[::-1].index(
                self.end_node_id)
        else:
            end_index = way.nodes.index(self.end_node_id)

        self.is_reversed = start_index > end_index
        self.direction_warning = self.is_reversed and not way.bidi
        if self.direction_warning:
            logger.warning(
                "Start node %s should not be after end node %s in "
                "unidirectional way %s",
                self.start_node_id, self.end_node_id, way_id)

        if self.is_reversed:
            node_ids = list(way.nodes[end_index:start_index + 1])
            node_ids.reverse()
        else:
            node_ids = list(way.nodes[start_index:end_index + 1])

        if len(node_ids) < 2:
            raise UnresolvableSectionError(
                f"Section of way {way_id} from {self.start_node_id} to "
                f"{self.end_node_id} has fewer than 2 nodes")
        self._node_ids: Tuple[str, ...] = tuple(node_ids)

        self.missing_node_ids = tuple(
            n for n in node_ids if network.get_node_coords(n) is None)
        if self.missing_node_ids:
            logger.warning(
                "Way %s: %d node(s) without coordinates",
                way_id, len(self.missing_node_ids))
        self._points: Tuple[Coordinate, ...] = tuple(
            network.resolve_coordinates(node_ids))
        self._cumulative: Tuple[float, ...] = tuple(
            cumulative_lengths(self._points))
        self._distance = (
            self._cumulative[-1] if len(self._points) >= 2 else 0.0)

        prefix = [c for c in (network.get_node_coords(n)
                              for n in way.nodes[:start_index + 1])
                  if c is not None]
        start_on_way = polyline_length(prefix)
        self.way_offset = -start_on_way if self.is_reversed else start_on_way

    def way_position(self, distance: float) -> float:
        """Direction-of-travel position on the way ``distance`` metres in."""
        return self.way_offset + distance

    def get_coordinates(self) -> List[Coordinate]:
        return list(self._points)

    def get_distance(self) -> float:
        """Geodesic length of the section in metres."""
        return self._distance

    def get_nodes(self) -> List[str]:
        return list(self._node_ids)

    def has_geometry(self) -> bool:
        """True if at least 2 of the section's nodes have coordinates."""
        return len(self._points) >= 2

    def locate(self, distance: float
               ) -> Tuple[Optional[Coordinate], Optional[float]]:
        """Coordinate and heading at a distance along the section.

        Args:
            distance: Distance from the section start in metres; clamped to
                the section length.

        Returns:
            ``(coordinate, bearing_radians)``, or ``(None, None)`` when the
            section has no usable geometry.
        """
        if not self.has_geometry():
            return None, None
        clamped = max(0.0, min(distance, self._distance))
        coord = point_along(self._points, clamped)
        i = bracketing_index(self._cumulative, clamped)
        heading = math.radians(bearing(self._points[i], self._points[i + 1]))
        return coord, heading

    def __repr__(self) -> str:
        return (f"TrackSection(way={self.way_id}, {self.start_node_id}->"
                f"{self.end_node_id}, {self._distance:.1f}m)")


@dataclass(frozen=True)
class StopPosition:
    """Stop projected onto a route.

    Attributes:
        node_id: Stop node id.
        route_position: Distance along the route where trains stop, metres.
        coordinates: Coordinate of the stop node.
        point_on_route: Nearest point of the route line to the stop node.
    """
    node_id: str
    route_position: float
    coordinates: Coordinate
    point_on_route: Coordinate


@dataclass(frozen=True)
class NextStop:
    node_id: str
    route_position: float
    coordinates: Coordinate
    distance: float


class TrainRoute:
    """Ordered, connected chain of track sections with stop points.

    Immutable after construction. The merged route line and the projected
    stop positions are computed once; ``rebuild_stop_cache`` recomputes
    them explicitly when stop definitions change.

    Attributes:
        network: Network the route was built against.
        way_sections: Ordered sections; the end node of each equals the
            start node of the next.
        stop_node_ids: Declared stop node ids, in route order.
        section_distances: Cumulative distance to the start of each
            section, metres.
        total_distance: Sum of all section lengths, metres.
        diagnostics: Data-quality findings collected while building.
        name: Display name.
        color: Line color.
        bullet: Short label.
    """

    # Platforms are ~150 m long; trains stop at the platform centre
    PLATFORM_OFFSET_M = 75.0

    def __init__(self, network: TrackNetwork,
                 sections: Iterable[TrackSection] = (),
                 stop_node_ids: Iterable[str] = (),
                 name: str = "", color: str = "#000000", bullet: str = "",
                 diagnostics: Optional[List[RouteDiagnostic]] = None
                 ) -> None:
        self.network = network
        self.name = name
        self.color = color
        self.bullet = bullet
        self.diagnostics: List[RouteDiagnostic] = list(diagnostics or [])
        self.way_sections: List[TrackSection] = self._leading_connected_run(
            list(sections))
        self.stop_node_ids: List[str] = list(stop_node_ids)
        self.section_distances: List[float] = []
        self.total_distance = 0.0

        for section in self.way_sections:
            if section.direction_warning:
                self._diagnose(
                    DiagnosticKind.DIRECTION,
                    f"Way {section.way_id} traversed against its direction "
                    f"({section.start_node_id} -> {section.end_node_id})")
            if section.missing_node_ids:
                self._diagnose(
                    DiagnosticKind.STRUCTURAL,
                    f"Way {section.way_id} references nodes without "
                    f"coordinates: {', '.join(section.missing_node_ids)}")
            if not section.has_geometry():
                self._diagnose(
                    DiagnosticKind.DEGENERATE,
                    f"Way {section.way_id} has fewer than 2 usable points")

        self._build_route()
        self._route_line: Optional[List[Coordinate]] = self._build_route_line()
        self._stop_positions: List[StopPosition] = self._cache_stop_positions()

    # ------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------
    @classmethod
    def from_service(cls, network: TrackNetwork,
                     service: ServiceDefinition) -> "TrainRoute":
        """Assemble a route from a service's unordered-endpoint way chain.

        Consecutive ways are joined at their first common node. A break in
        the chain keeps the leading connected run; nothing is raised.

        Args:
            network: Network to resolve ways against.
            service: Service definition with way ids and stop node ids.

        Returns:
            The assembled route.
        """
        diagnostics: List[RouteDiagnostic] = []

        way_ids: List[str] = []
        for way_id in service.way_ids:
            way = network.get_way(way_id)
            if way is None or len(way.nodes) < 2:
                diagnostics.append(_log_diagnostic(
                    DiagnosticKind.STRUCTURAL,
                    f"Service {service.bullet or service.name}: way "
                    f"{way_id} missing or has fewer than 2 nodes"))
                continue
            way_ids.append(way_id)

        if len(way_ids) <= 1:
            endpoints = [[None, None] for _ in way_ids]
        else:
            nodes = [network.get_way(w).nodes for w in way_ids]
            endpoints = [[n[0], n[-1]] for n in nodes]

            for i in range(len(way_ids) - 1):
                common = find_common_node(nodes[i], nodes[i + 1])
                if common is None:
                    diagnostics.append(_log_diagnostic(
                        DiagnosticKind.TOPOLOGICAL,
                        f"No connecting node found between ways "
                        f"{way_ids[i]} and {way_ids[i + 1]}"))
                    way_ids = way_ids[:i + 1]
                    nodes = nodes[:i + 1]
                    endpoints = endpoints[:i + 1]
                    break
                endpoints[i][1] = common
                endpoints[i + 1][0] = common

            if endpoints[0][0] == endpoints[0][1]:
                endpoints[0][0] = nodes[0][-1]
            if endpoints[-1][0] == endpoints[-1][1]:
                endpoints[-1][1] = nodes[-1][0]

        sections: List[TrackSection] = []
        for way_id, (start, end) in zip(way_ids, endpoints):
            try:
                sections.append(TrackSection(network, way_id, start, end))
            except UnresolvableSectionError as e:
                # A collapsed section is dropped; its neighbours meet at the
                # node it collapsed to
                diagnostics.append(_log_diagnostic(
                    DiagnosticKind.DEGENERATE, str(e)))

        return cls(network, sections, service.stop_node_ids,
                   name=service.name, color=service.color,
                   bullet=service.bullet, diagnostics=diagnostics)

    @classmethod
    def from_user_route(cls, network: TrackNetwork,
                        record: UserRouteRecord) -> "TrainRoute":
        """Build a route from a user-drawn record with explicit endpoints.

        User routes carry no stop definitions.

        Args:
            network: Network to resolve ways against.
            record: Stored user route.

        Returns:
            The built route.
        """
        diagnostics: List[RouteDiagnostic] = []
        sections: List[TrackSection] = []
        for raw in record.way_sections:
            try:
                sections.append(TrackSection(
                    network, raw.way_id, raw.start_node_id, raw.end_node_id))
            except UnresolvableSectionError as e:
                diagnostics.append(_log_diagnostic(
                    DiagnosticKind.STRUCTURAL,
                    f"User route {record.name}: {e}"))
        return cls(network, sections, (), name=record.name,
                   color=record.color, bullet=record.bullet,
                   diagnostics=diagnostics)

    @classmethod
    def from_sections(cls, network: TrackNetwork,
                      sections: Iterable[TrackSection],
                      stop_node_ids: Iterable[str] = (),
                      **metadata) -> "TrainRoute":
        return cls(network, sections, stop_node_ids, **metadata)

    def _diagnose(self, kind: DiagnosticKind, message: str) -> None:
        self.diagnostics.append(_log_diagnostic(kind, message))

    def _leading_connected_run(self, sections: List[TrackSection]
                               ) -> List[TrackSection]:
        """Keep sections up to the first break in node continuity."""
        for i in range(1, len(sections)):
            if sections[i - 1].end_node_id != sections[i].start_node_id:
                self._diagnose(
                    DiagnosticKind.TOPOLOGICAL,
                    f"Section {i} (way {sections[i].way_id}) starts at "
                    f"{sections[i].start_node_id}, previous section ends at "
                    f"{sections[i - 1].end_node_id}; route truncated")
                return sections[:i]
        return sections

    def _build_route(self) -> None:
        """Fill the cumulative distance table."""
        cumulative = 0.0
        self.section_distances = []
        for section in self.way_sections:
            self.section_distances.append(cumulative)
            cumulative += section.get_distance()
        self.total_distance = cumulative

    def _build_route_line(self) -> Optional[List[Coordinate]]:
        """Merge section polylines without duplicating joint points."""
        route_coordinates: List[Coordinate] = []
        for section in self.way_sections:
            coordinates = section.get_coordinates()
            if len(coordinates) < 2:
                continue
            if route_coordinates and route_coordinates[-1] == coordinates[0]:
                route_coordinates.extend(coordinates[1:])
            else:
                route_coordinates.extend(coordinates)
        if len(route_coordinates) < 2:
            return None
        return route_coordinates

    def _cache_stop_positions(self) -> List[StopPosition]:
        """Project every stop node onto the route line."""
        if not self.stop_node_ids:
            return []
        if self._route_line is None:
            self._diagnose(
                DiagnosticKind.DEGENERATE,
                f"Route {self.name or self.bullet} has no usable line; "
                f"stops ignored")
            return []

        stops: List[StopPosition] = []
        for stop_node_id in self.stop_node_ids:
            stop_coords = self.network.get_node_coords(stop_node_id)
            if stop_coords is None:
                logger.warning(
                    "Stop node %s has no coordinates; skipped", stop_node_id)
                continue
            point, location, _ = nearest_point_on_line(
                self._route_line, stop_coords)
            stops.append(StopPosition(
                node_id=stop_node_id,
                route_position=max(0.0, location - self.PLATFORM_OFFSET_M),
                coordinates=stop_coords,
                point_on_route=point,
            ))
        stops.sort(key=lambda s: s.route_position)
        return stops

    def rebuild_stop_cache(self,
                           stop_node_ids: Optional[Iterable[str]] = None
                           ) -> None:
        """Recompute projected stop positions.

        Args:
            stop_node_ids: New stop definitions. The current ones are kept
                if None.
        """
        if stop_node_ids is not None:
            self.stop_node_ids = list(stop_node_ids)
        self._stop_positions = self._cache_stop_positions()

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------
    def get_way_sections(self) -> List[TrackSection]:
        return list(self.way_sections)

    def get_way_ids(self) -> List[str]:
        return [section.way_id for section in self.way_sections]

    def includes_way(self, way_id: str) -> bool:
        return any(section.way_id == way_id for section in self.way_sections)

    def is_drivable(self) -> bool:
        """True if a train can be placed on the route."""
        return any(section.has_geometry() for section in self.way_sections)

    def get_route_coordinates(self) -> List[Coordinate]:
        return list(self._route_line or [])

    def get_route_position(self, section_index: int,
                           distance_along: float) -> float:
        """Route distance of a point given as section index and offset."""
        if not 0 <= section_index < len(self.section_distances):
            return 0.0
        return self.section_distances[section_index] + distance_along

    def get_section_position(self, route_position: float
                             ) -> Optional[Tuple[int, float]]:
        """Section index and distance along it for a route distance.

        Args:
            route_position: Distance from the route start in metres.

        Returns:
            ``(section_index, distance_along)``, or None if the position is
            off the route.
        """
        for index, section in enumerate(self.way_sections):
            length = section.get_distance()
            if length == 0:
                continue
            start = self.section_distances[index]
            if start <= route_position <= start + length:
                return index, route_position - start
        return None

    def get_cached_stop_positions(self) -> List[StopPosition]:
        return list(self._stop_positions)

    def get_next_stop_ahead(self, current_route_position: float,
                            last_stop_id: Optional[str] = None
                            ) -> Optional[NextStop]:
        """First stop strictly ahead of a route position.

        Args:
            current_route_position: Position along the route in metres.
            last_stop_id: Stop just departed from; never returned.

        Returns:
            The next stop with its remaining distance, or None.
        """
        for stop in self._stop_positions:
            if last_stop_id and stop.node_id == last_stop_id:
                continue
            if stop.route_position > current_route_position:
                return NextStop(
                    node_id=stop.node_id,
                    route_position=stop.route_position,
                    coordinates=stop.coordinates,
                    distance=stop.route_position - current_route_position,
                )
        return None

    def __len__(self) -> int:
        return len(self.way_sections)

    def __repr__(self) -> str:
        return (f"TrainRoute({self.bullet or self.name!r}, "
                f"{len(self.way_sections)} sections, "
                f"{self.total_distance:.1f}m)")


def _log_diagnostic(kind: DiagnosticKind, message: str) -> RouteDiagnostic:
    """Log a route diagnostic under its own kind and return it."""
    logger.warning("[%s] %s", kind.value, message)
    return RouteDiagnostic(kind, message)
