"""
Route Designer primitives

Section-chain operations used by an interactive route-authoring tool.
They need only a TrackNetwork: no fleet and no live trains.
"""
import logging
import time
import uuid
from typing import List, Optional, Sequence, Tuple

from trackModel.route_backend import (
    TrackSection,
    TrainRoute,
    UnresolvableSectionError,
    find_common_node,
)
from trackModel.track_model_backend import TrackNetwork
from universal.universal import (
    DiagnosticKind,
    Direction,
    SectionRecord,
    ServiceDefinition,
    UserRouteRecord,
)

logger = logging.getLogger(__name__)


def start_sections(network: TrackNetwork, way_id: str,
                   direction: Direction = Direction.FORWARD
                   ) -> List[TrackSection]:
    """Begin a new chain with one full way.

    Args:
        network: Network to resolve the way against.
        way_id: First way of the route.
        direction: Walk the way forward or backward.

    Returns:
        A one-section chain, or an empty list if the way cannot be used.
    """
    way = network.get_way(way_id)
    if way is None or len(way.nodes) < 2:
        logger.warning("Cannot start route on way %s", way_id)
        return []
    if direction == Direction.BACKWARD:
        start, end = way.nodes[-1], way.nodes[0]
    else:
        start, end = way.nodes[0], way.nodes[-1]
    try:
        return [TrackSection(network, way_id, start, end)]
    except UnresolvableSectionError as e:
        logger.warning("Cannot start route on way %s: %s", way_id, e)
        return []


def available_next_ways(network: TrackNetwork,
                        sections: Sequence[TrackSection]) -> List[str]:
    """Ways that can extend the chain from its last section.

    A way qualifies when it is not yet used and touches any node of the
    last section other than its first, at a position from which it can be
    travelled (any node of a bidirectional way, any node but the last of a
    unidirectional one).

    Args:
        network: Network to search.
        sections: Current chain.

    Returns:
        Qualifying way ids, in network order.
    """
    if not sections:
        return []
    # Connecting at the first node would erase the last section entirely
    node_ids = sections[-1].get_nodes()[1:]
    used = {section.way_id for section in sections}

    connected: List[str] = []
    for way_id in network.get_all_way_ids():
        if way_id in used:
            continue
        way = network.get_way(way_id)
        for node_id in node_ids:
            if node_id not in way.nodes:
                continue
            index = way.nodes.index(node_id)
            if way.bidi or index < len(way.nodes) - 1:
                connected.append(way_id)
                break
    return connected


def extend_sections(network: TrackNetwork,
                    sections: Sequence[TrackSection], way_id: str,
                    direction: Direction = Direction.FORWARD
                    ) -> Optional[List[TrackSection]]:
    """Append a way to the chain, trimming the last section to the join.

    Args:
        network: Network to resolve ways against.
        sections: Current chain (not modified).
        way_id: Way to append.
        direction: FORWARD runs the new section towards the way's last
            node, BACKWARD towards its first node.

    Returns:
        The new chain, or None if the way does not connect, connects at the
        last section's start, or yields a section with fewer than 2 points.
    """
    if not sections:
        return start_sections(network, way_id, direction) or None

    new_way = network.get_way(way_id)
    if new_way is None:
        return None

    previous = list(sections[:-1])
    last_section = sections[-1]

    connecting_node_id = find_common_node(last_section.get_nodes(),
                                          new_way.nodes)
    if connecting_node_id is None:
        return None
    if connecting_node_id == last_section.start_node_id:
        return None

    try:
        if connecting_node_id != last_section.end_node_id:
            last_section = TrackSection(
                network, last_section.way_id,
                last_section.start_node_id, connecting_node_id)
        end_node_id = (new_way.nodes[0] if direction == Direction.BACKWARD
                       else new_way.nodes[-1])
        new_section = TrackSection(network, way_id, connecting_node_id,
                                   end_node_id)
    except UnresolvableSectionError as e:
        logger.debug("Cannot extend route with way %s: %s", way_id, e)
        return None

    if len(new_section.get_coordinates()) < 2:
        return None
    return previous + [last_section, new_section]


def validate_way_chain(network: TrackNetwork,
                       way_ids: Sequence[str]) -> Tuple[bool, float]:
    """Check whether a way-id chain forms one connected path.

    Args:
        network: Network to resolve ways against.
        way_ids: Ordered way ids.

    Returns:
        ``(connected, length_m)`` where ``length_m`` is the length of the
        assembled (possibly truncated) route.
    """
    route = TrainRoute.from_service(
        network, ServiceDefinition(name="", color="", bullet="",
                                   way_ids=list(way_ids)))
    broken = any(d.kind in (DiagnosticKind.TOPOLOGICAL,
                            DiagnosticKind.STRUCTURAL)
                 for d in route.diagnostics)
    return (len(route) > 0 and not broken), route.total_distance


def record_from_sections(sections: Sequence[TrackSection], name: str = "",
                         color: str = "#0039a6", bullet: str = "",
                         record_id: Optional[str] = None
                         ) -> UserRouteRecord:
    """Serialize a chain into a user route record for the host to store."""
    return UserRouteRecord(
        id=record_id or str(uuid.uuid4()),
        name=name or "My Route",
        color=color,
        bullet=bullet or "R",
        way_sections=[
            SectionRecord(s.way_id, s.start_node_id, s.end_node_id)
            for s in sections
        ],
        created_at=int(time.time() * 1000),
    )
