"""Douglas-Peucker polyline simplification.

Distances are planar on raw lat/lon degrees, which is a fair approximation
for spans under ~100 km (a single route or leg). Epsilon is in degrees:

    0.00001  (~1.1 m)  high fidelity, little compression
    0.0001   (~11 m)   default for urban navigation
    0.001    (~111 m)  overview of long routes
"""

import logging
import math

from routegeo.core.geo import GeoPoint, Polyline

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 0.0001
DEFAULT_TARGET_POINTS = 100


def perpendicular_distance(point: GeoPoint, start: GeoPoint, end: GeoPoint) -> float:
    """Distance from point to the infinite line through start and end (degrees)."""
    x0, y0 = point.lat, point.lon
    x1, y1 = start.lat, start.lon
    x2, y2 = end.lat, end.lon

    denominator = math.sqrt((y2 - y1) ** 2 + (x2 - x1) ** 2)
    if denominator == 0:
        # Zero-length base: plain Euclidean distance to the point
        return math.sqrt((x0 - x1) ** 2 + (y0 - y1) ** 2)

    numerator = abs((y2 - y1) * x0 - (x2 - x1) * y0 + x2 * y1 - y2 * x1)
    return numerator / denominator


def compress(points: Polyline, epsilon: float = DEFAULT_EPSILON) -> Polyline:
    """Simplify a polyline, always keeping the first and last point.

    Equivalent to the recursive formulation: the farthest point from the
    (first, last) chord splits the span when it is farther than epsilon,
    otherwise the span collapses to its endpoints. Uses an explicit stack so
    shapes with many thousands of points do not hit the recursion limit.
    """
    if len(points) <= 2:
        return list(points)

    keep = [False] * len(points)
    keep[0] = keep[-1] = True
    stack = [(0, len(points) - 1)]

    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue

        max_dist = 0.0
        max_idx = first
        for i in range(first + 1, last):
            d = perpendicular_distance(points[i], points[first], points[last])
            if d > max_dist:
                max_dist = d
                max_idx = i

        if max_dist > epsilon:
            keep[max_idx] = True
            stack.append((first, max_idx))
            stack.append((max_idx, last))

    return [p for p, k in zip(points, keep) if k]


def compress_adaptive(points: Polyline, target_points: int = DEFAULT_TARGET_POINTS) -> Polyline:
    """Compress toward an approximate output size instead of a fixed tolerance.

    Epsilon grows with log(len / target), so longer inputs are simplified
    harder. The result size is approximate, not guaranteed.
    """
    if target_points < 2:
        raise ValueError("target_points must be at least 2")
    if len(points) <= target_points:
        return list(points)

    ratio = len(points) / target_points
    epsilon = DEFAULT_EPSILON * math.log(ratio + 1)
    return compress(points, epsilon)


def compress_multiple(polylines: list[Polyline], epsilon: float = DEFAULT_EPSILON) -> list[Polyline]:
    """Compress each polyline independently (e.g. the legs of an itinerary)."""
    return [compress(p, epsilon) for p in polylines]


def compression_ratio(original: Polyline, compressed: Polyline) -> float:
    """Fraction of points removed, 0.0-1.0."""
    if not original:
        return 0.0
    return 1.0 - len(compressed) / len(original)
