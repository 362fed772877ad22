"""Geographic primitives: points, polylines, distances and the wire codec.

Internally points are (lat, lon). On the wire, and in persisted cache state,
a polyline is always an array of [lon, lat] pairs (GeoJSON coordinate order).
"""

import math
from dataclasses import dataclass

from shapely.geometry import LineString, mapping

from routegeo.core.exceptions import InvalidCoordinates

EARTH_RADIUS_M = 6_371_000


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lon: float


Polyline = list[GeoPoint]


def validate_point(point: GeoPoint) -> GeoPoint:
    """Reject NaN and out-of-range coordinates."""
    if math.isnan(point.lat) or math.isnan(point.lon):
        raise InvalidCoordinates(f"NaN coordinate: ({point.lat}, {point.lon})")
    if not -90.0 <= point.lat <= 90.0:
        raise InvalidCoordinates(f"Latitude out of range: {point.lat}")
    if not -180.0 <= point.lon <= 180.0:
        raise InvalidCoordinates(f"Longitude out of range: {point.lon}")
    return point


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters between two points."""
    dlat = math.radians(b.lat - a.lat)
    dlon = math.radians(b.lon - a.lon)
    h = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(min(1.0, h)))


def polyline_length_m(points: Polyline) -> float:
    """Cumulative haversine length of consecutive points."""
    total = 0.0
    for i in range(1, len(points)):
        total += haversine_m(points[i - 1], points[i])
    return total


def to_wire(points: Polyline) -> list[list[float]]:
    """Serialize a polyline as [[lon, lat], ...]."""
    return [[p.lon, p.lat] for p in points]


def from_wire(coords: list[list[float]]) -> Polyline:
    """Parse [[lon, lat], ...] into a polyline."""
    return [GeoPoint(lat=float(c[1]), lon=float(c[0])) for c in coords]


def to_linestring(points: Polyline) -> LineString:
    # Shapely uses (x, y) = (lon, lat)
    return LineString([(p.lon, p.lat) for p in points])


def to_geojson(points: Polyline) -> dict:
    """GeoJSON LineString mapping for a polyline with at least two points."""
    geom = mapping(to_linestring(points))
    return {"type": geom["type"], "coordinates": [list(c) for c in geom["coordinates"]]}
