"""
Track Model Backend
"""
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from trackModel.geodesy import Coordinate, polyline_length
from universal.universal import ServiceDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Node:
    """Single surveyed point of the network.

    Attributes:
        node_id: Unique identifier of the node.
        coords: ``(longitude, latitude)`` in degrees.
    """
    node_id: str
    coords: Coordinate


@dataclass(frozen=True)
class TrackWay:
    """Named, ordered chain of nodes forming one stretch of guideway.

    Traversal from the first to the last listed node is always legal;
    reverse traversal is legal only when ``bidi`` is set.

    Attributes:
        way_id: Unique identifier of the way.
        nodes: Ordered node ids.
        bidi: Whether the way may be traversed last-to-first.
    """
    way_id: str
    nodes: Tuple[str, ...]
    bidi: bool = False

    @property
    def first_node(self) -> Optional[str]:
        return self.nodes[0] if self.nodes else None

    @property
    def last_node(self) -> Optional[str]:
        return self.nodes[-1] if self.nodes else None


@dataclass(frozen=True)
class Station:
    """Named station; only a source of stop targets, never traversed."""
    station_id: str
    coords: Coordinate
    name: str = ""


class TrackNetwork:
    """Static graph of nodes, ways and stations.

    Built once from the preprocessed network document and read-only
    afterwards; it may be shared by any number of routes and trains.
    The only mutation is a full ``reload`` which also rebuilds the
    connectivity index from scratch.

    Attributes:
        line_name: Name of the loaded network (file stem when loaded from
            disk).
        nodes: Node id -> Node.
        ways: Way id -> TrackWay.
        stations: Station id -> Station.
    """

    def __init__(self, infra: Optional[Dict[str, Any]] = None) -> None:
        """Initialize a track network.

        Args:
            infra: Optional network document with ``node_coords``, ``ways``
                and ``stations`` keys. An empty network is created if None.
        """
        self.line_name = ""
        self.nodes: Dict[str, Node] = {}
        self.ways: Dict[str, TrackWay] = {}
        self.stations: Dict[str, Station] = {}
        self._connections: Dict[str, Set[str]] = {}
        if infra is not None:
            self.reload(infra)

    @classmethod
    def from_dict(cls, infra: Dict[str, Any]) -> "TrackNetwork":
        return cls(infra)

    @classmethod
    def from_json(cls, path: str) -> "TrackNetwork":
        """Load a network from its canonical JSON file.

        Args:
            path: Path to the network JSON file.

        Returns:
            The loaded network.
        """
        logger.info("Loading track network from %s", path)
        with open(path, mode="r", encoding="utf-8") as file:
            infra = json.load(file)
        network = cls(infra)
        network.line_name = os.path.splitext(os.path.basename(path))[0]
        return network

    def reload(self, infra: Dict[str, Any]) -> None:
        """Replace the whole network and rebuild the connectivity index.

        Args:
            infra: Network document with ``node_coords``, ``ways`` and
                ``stations`` keys.

        Raises:
            ValueError: If the document is not a mapping or a coordinate
                or node list is malformed.
        """
        if not isinstance(infra, dict):
            raise ValueError("Network document must be a JSON object.")

        nodes: Dict[str, Node] = {}
        for node_id, coords in (infra.get("node_coords") or {}).items():
            try:
                lon, lat = float(coords[0]), float(coords[1])
            except (TypeError, ValueError, IndexError) as e:
                raise ValueError(
                    f"Invalid coordinates for node {node_id}: {coords!r}"
                ) from e
            nodes[str(node_id)] = Node(str(node_id), (lon, lat))

        ways: Dict[str, TrackWay] = {}
        for way_id, way in (infra.get("ways") or {}).items():
            node_ids = way.get("nodes") if isinstance(way, dict) else None
            if not isinstance(node_ids, list):
                raise ValueError(f"Way {way_id} has no node list.")
            if len(node_ids) < 2:
                logger.warning("Way %s has fewer than 2 nodes", way_id)
            ways[str(way_id)] = TrackWay(
                way_id=str(way_id),
                nodes=tuple(str(n) for n in node_ids),
                bidi=bool(way.get("bidi", False)),
            )

        stations: Dict[str, Station] = {}
        for station_id, station in (infra.get("stations") or {}).items():
            coords = station.get("coords") or [0.0, 0.0]
            stations[str(station_id)] = Station(
                station_id=str(station_id),
                coords=(float(coords[0]), float(coords[1])),
                name=str(station.get("name", "")),
            )

        self.nodes = nodes
        self.ways = ways
        self.stations = stations
        self._connections = self._build_connections()
        logger.info(
            "Track network loaded: %d nodes, %d ways, %d stations",
            len(self.nodes), len(self.ways), len(self.stations))

    def _build_connections(self) -> Dict[str, Set[str]]:
        """Map each way to the other ways sharing one of its endpoints."""
        by_endpoint: Dict[str, Set[str]] = {}
        for way in self.ways.values():
            for node_id in {way.first_node, way.last_node}:
                if node_id is not None:
                    by_endpoint.setdefault(node_id, set()).add(way.way_id)

        connections: Dict[str, Set[str]] = {}
        for way in self.ways.values():
            linked: Set[str] = set()
            for node_id in {way.first_node, way.last_node}:
                if node_id is not None:
                    linked |= by_endpoint.get(node_id, set())
            linked.discard(way.way_id)
            connections[way.way_id] = linked
        return connections

    def get_node_coords(self, node_id: str) -> Optional[Coordinate]:
        """Get the coordinate of a node.

        Args:
            node_id: ID of the node.

        Returns:
            ``(longitude, latitude)`` or None if the node is unknown.
        """
        node = self.nodes.get(node_id)
        return node.coords if node is not None else None

    def get_way(self, way_id: str) -> Optional[TrackWay]:
        return self.ways.get(way_id)

    def get_all_way_ids(self) -> List[str]:
        return list(self.ways.keys())

    def get_station(self, station_id: str) -> Optional[Station]:
        return self.stations.get(station_id)

    def get_stations(self) -> List[Station]:
        return list(self.stations.values())

    def resolve_coordinates(self, node_ids) -> List[Coordinate]:
        """Map node ids to coordinates, dropping ids that do not resolve.

        Args:
            node_ids: Iterable of node ids.

        Returns:
            Coordinates of the resolvable nodes, in order.
        """
        coords: List[Coordinate] = []
        missing = 0
        for node_id in node_ids:
            c = self.get_node_coords(node_id)
            if c is None:
                missing += 1
                continue
            coords.append(c)
        if missing:
            logger.debug("%d node(s) without coordinates skipped", missing)
        return coords

    def get_way_coordinates(self, way_id: str) -> List[Coordinate]:
        """Get the resolved coordinate list of a way.

        Args:
            way_id: ID of the way.

        Returns:
            Coordinates of the way's resolvable nodes, or an empty list if
            the way is unknown or has fewer than 2 nodes.
        """
        way = self.ways.get(way_id)
        if way is None or len(way.nodes) < 2:
            return []
        return self.resolve_coordinates(way.nodes)

    def get_way_distance(self, way_id: str) -> float:
        """Geodesic length of a way in metres (0 if not computable)."""
        coords = self.get_way_coordinates(way_id)
        if len(coords) < 2:
            return 0.0
        return polyline_length(coords)

    def connected_ways(self, way_id: str) -> Set[str]:
        """Ways sharing an endpoint node with ``way_id``."""
        return set(self._connections.get(way_id, set()))

    def has_usable_track(self) -> bool:
        """True if at least one way has 2 or more nodes."""
        return any(len(way.nodes) >= 2 for way in self.ways.values())

    def get_network_status(self) -> Dict[str, Any]:
        return {
            "line_name": self.line_name,
            "nodes": len(self.nodes),
            "ways": len(self.ways),
            "stations": len(self.stations),
        }


def load_services(source) -> List[ServiceDefinition]:
    """Load service definitions from a JSON file path or parsed document.

    Args:
        source: Path to ``services.json`` or the already parsed
            ``{"services": [...]}`` document.

    Returns:
        List of service definitions, in file order.

    Raises:
        ValueError: If the document has no ``services`` list.
    """
    if isinstance(source, (str, os.PathLike)):
        logger.info("Loading services from %s", source)
        with open(source, mode="r", encoding="utf-8") as file:
            data = json.load(file)
    else:
        data = source

    services = data.get("services") if isinstance(data, dict) else None
    if not isinstance(services, list):
        raise ValueError("Services document must contain a 'services' list.")

    out = []
    for raw in services:
        service = ServiceDefinition.from_dict(raw)
        if not service.way_ids:
            logger.warning("Service %s has no route ways", service.bullet)
        if not service.stop_node_ids:
            logger.warning("Service %s has no stop nodes", service.bullet)
        out.append(service)
    return out
