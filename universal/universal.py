"""
Universal data structures and conversion functions for the transit simulator.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TrainState(Enum):
    """Enumeration of train motion states."""
    MOVING = "moving"
    DWELLING = "dwelling"


class Direction(Enum):
    """Direction in which a way is added to a user-drawn route.
    Forward walks the way first-to-last node, backward last-to-first."""
    FORWARD = "forward"
    BACKWARD = "backward"


class DiagnosticKind(Enum):
    """Enumeration of data-quality diagnostics raised while building routes.

    STRUCTURAL: a referenced node or way is absent from the network.
    TOPOLOGICAL: two consecutive ways share no connecting node.
    DIRECTION: a unidirectional way is walked against its direction.
    DEGENERATE: a section or polyline has fewer than 2 usable points.
    """
    STRUCTURAL = "structural"
    TOPOLOGICAL = "topological"
    DIRECTION = "direction"
    DEGENERATE = "degenerate"


@dataclass(frozen=True)
class RouteDiagnostic:
    """Single data-quality finding attached to a route.

    Attributes:
        kind: Category of the finding.
        message: Human readable description.
    """
    kind: DiagnosticKind
    message: str


@dataclass
class KinematicLimits:
    """Per-train overrides for the kinematic constants.

    Attributes:
        base_acceleration: Powering acceleration in m/s^2.
        base_deceleration: Service brake rate in m/s^2 (positive).
        emergency_deceleration: Emergency brake rate in m/s^2 (positive).
        max_speed: Cruise cap in m/s.
    """
    base_acceleration: float = 1.0
    base_deceleration: float = 2.0
    emergency_deceleration: float = 5.0
    max_speed: float = 60 * 0.44704


@dataclass
class ServiceDefinition:
    """Named service route as delivered by the preprocessing step.

    Attributes:
        name: Display name of the service.
        color: Line color, e.g. "#00933c".
        bullet: Short label, e.g. "4".
        stop_node_ids: Stop node ids in route order.
        way_ids: Track way ids in route order.
    """
    name: str
    color: str
    bullet: str
    stop_node_ids: List[str] = field(default_factory=list)
    way_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceDefinition":
        return cls(
            name=str(data.get("name", "")),
            color=str(data.get("color", "#000000")),
            bullet=str(data.get("bullet", "")),
            stop_node_ids=[str(n) for n in data.get("stop_node_ids", [])],
            way_ids=[str(w) for w in data.get("route_way_ids", [])],
        )


@dataclass
class SectionRecord:
    """Explicit way slice inside a user-drawn route record."""
    way_id: str
    start_node_id: str
    end_node_id: str


@dataclass
class UserRouteRecord:
    """JSON-like record for a user-drawn route, persisted by the host.

    Attributes:
        id: Unique record identifier.
        name: Display name.
        color: Line color.
        bullet: Short label.
        way_sections: Ordered explicit way slices.
        created_at: Creation time in epoch milliseconds.
    """
    id: str
    name: str
    color: str = "#0039a6"
    bullet: str = "R"
    way_sections: List[SectionRecord] = field(default_factory=list)
    created_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "bullet": self.bullet,
            "waySections": [
                {
                    "wayId": s.way_id,
                    "startNodeId": s.start_node_id,
                    "endNodeId": s.end_node_id,
                }
                for s in self.way_sections
            ],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRouteRecord":
        """Build a record from its stored dictionary form.

        Args:
            data: Dictionary as produced by ``to_dict``.

        Returns:
            The parsed record.

        Raises:
            ValueError: If the record has no id or a malformed section.
        """
        if not data.get("id"):
            raise ValueError("User route record is missing 'id'.")
        sections = []
        for index, raw in enumerate(data.get("waySections", [])):
            try:
                sections.append(SectionRecord(
                    way_id=str(raw["wayId"]),
                    start_node_id=str(raw["startNodeId"]),
                    end_node_id=str(raw["endNodeId"]),
                ))
            except (KeyError, TypeError) as e:
                raise ValueError(
                    f"Malformed way section {index} in user route "
                    f"{data['id']}: {e}") from e
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or "My Route"),
            color=str(data.get("color") or "#0039a6"),
            bullet=str(data.get("bullet") or "R"),
            way_sections=sections,
            created_at=data.get("createdAt"),
        )


class ConversionFunctions:
    """Holds conversion factors for various units."""

    @staticmethod
    def mph_to_mps(mph):
        return mph * 0.44704  # conversion factor

    @staticmethod
    def mps_to_mph(mps):
        return mps / 0.44704  # conversion factor

    @staticmethod
    def km_to_meters(km):
        return km * 1000.0

    @staticmethod
    def meters_to_km(meters):
        return meters / 1000.0

    @staticmethod
    def degrees_to_radians(degrees):
        return math.radians(degrees)

    @staticmethod
    def radians_to_degrees(radians):
        return math.degrees(radians)
