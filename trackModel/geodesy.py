"""
Geodesic helpers for track polylines.

Coordinates are ``(longitude, latitude)`` pairs in degrees; distances are
metres on a spherical earth (geopy great-circle).
"""
import math
from typing import List, Optional, Sequence, Tuple

from geopy.distance import great_circle
from geopy.point import Point

Coordinate = Tuple[float, float]


def _to_point(coord: Coordinate) -> Tuple[float, float]:
    """geopy expects (latitude, longitude)."""
    return (coord[1], coord[0])


def distance_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in metres."""
    return great_circle(_to_point(a), _to_point(b)).meters


def polyline_length(coords: Sequence[Coordinate]) -> float:
    """Sum of great-circle distances along a polyline in metres.

    Returns 0 for polylines with fewer than 2 points.
    """
    if len(coords) < 2:
        return 0.0
    return sum(distance_m(coords[i], coords[i + 1])
               for i in range(len(coords) - 1))


def cumulative_lengths(coords: Sequence[Coordinate]) -> List[float]:
    """Distance from the first vertex to every vertex, in metres."""
    if not coords:
        return []
    out = [0.0]
    for i in range(len(coords) - 1):
        out.append(out[-1] + distance_m(coords[i], coords[i + 1]))
    return out


def bearing(a: Coordinate, b: Coordinate) -> float:
    """Initial bearing from ``a`` to ``b`` in degrees, in (-180, 180]."""
    lon1, lat1 = math.radians(a[0]), math.radians(a[1])
    lon2, lat2 = math.radians(b[0]), math.radians(b[1])
    d_lon = lon2 - lon1
    y = math.sin(d_lon) * math.cos(lat2)
    x = (math.cos(lat1) * math.sin(lat2) -
         math.sin(lat1) * math.cos(lat2) * math.cos(d_lon))
    return math.degrees(math.atan2(y, x))


def destination(origin: Coordinate, distance: float,
                bearing_deg: float) -> Coordinate:
    """Point reached from ``origin`` after ``distance`` metres on a bearing."""
    dest = great_circle(meters=distance).destination(
        Point(origin[1], origin[0]), bearing=bearing_deg)
    return (dest.longitude, dest.latitude)


def point_along(coords: Sequence[Coordinate],
                distance: float) -> Optional[Coordinate]:
    """Point ``distance`` metres along a polyline.

    Distances beyond either end clamp to the first/last vertex.

    Args:
        coords: Polyline vertices.
        distance: Distance from the first vertex in metres.

    Returns:
        The interpolated coordinate, or None for an empty polyline.
    """
    if not coords:
        return None
    if distance <= 0 or len(coords) == 1:
        return tuple(coords[0])
    travelled = 0.0
    for i in range(len(coords) - 1):
        seg = distance_m(coords[i], coords[i + 1])
        if travelled + seg >= distance:
            overshoot = distance - travelled
            if overshoot <= 0:
                return tuple(coords[i])
            return destination(coords[i], overshoot,
                               bearing(coords[i], coords[i + 1]))
        travelled += seg
    return tuple(coords[-1])


def bracketing_index(cumulative: Sequence[float], distance: float) -> int:
    """Index ``i`` of the polyline leg ``[i, i + 1]`` that contains ``distance``.

    Zero-length legs are skipped so the returned leg always has a
    meaningful bearing where one exists.
    """
    last_leg = len(cumulative) - 2
    if last_leg < 0:
        return 0
    for i in range(last_leg + 1):
        if cumulative[i + 1] > cumulative[i] and distance < cumulative[i + 1]:
            return i
    for i in range(last_leg, -1, -1):
        if cumulative[i + 1] > cumulative[i]:
            return i
    return last_leg


def nearest_point_on_line(coords: Sequence[Coordinate],
                          target: Coordinate
                          ) -> Optional[Tuple[Coordinate, float, float]]:
    """Project ``target`` onto the nearest point of a polyline.

    Each leg is projected in a local equirectangular frame centred on the
    leg start; the candidate with the smallest great-circle distance to the
    target wins.

    Args:
        coords: Polyline vertices (at least 2).
        target: Point to project.

    Returns:
        ``(point, location_m, distance_to_target_m)`` where ``location_m``
        is the distance along the polyline to the projected point, or None
        when the polyline has fewer than 2 vertices.
    """
    if len(coords) < 2:
        return None

    best: Optional[Tuple[Coordinate, float, float]] = None
    travelled = 0.0
    for i in range(len(coords) - 1):
        a, b = coords[i], coords[i + 1]
        seg_len = distance_m(a, b)

        cos_lat = math.cos(math.radians(a[1]))
        bx, by = (b[0] - a[0]) * cos_lat, b[1] - a[1]
        px, py = (target[0] - a[0]) * cos_lat, target[1] - a[1]
        denom = bx * bx + by * by
        t = 0.0 if denom == 0 else max(0.0, min(1.0, (px * bx + py * by) / denom))

        if t == 0.0:
            candidate, along = tuple(a), 0.0
        elif t == 1.0:
            candidate, along = tuple(b), seg_len
        else:
            candidate = (a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1]))
            along = distance_m(a, candidate)

        gap = distance_m(candidate, target)
        if best is None or gap < best[2]:
            best = (candidate, travelled + along, gap)
        travelled += seg_len
    return best
