"""Stop-to-stop geometry cut from a transit line's full shape.

Each stop is matched to its nearest shape point; the slice between them is
the leg. When the shape is ordered against the direction of travel (or the
stops were swapped) the whole shape is returned and tagged so callers can
tell. When no shape exists at all, the extractor walks a ladder: routing
engine, then a straight line. It always returns a drawable polyline.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from routegeo.core.exceptions import ProviderError
from routegeo.core.geo import GeoPoint, Polyline, haversine_m, polyline_length_m
from routegeo.core.providers import RouteProvider

logger = logging.getLogger(__name__)

DEFAULT_BUS_SPEED_MPS = 10.0  # ~36 km/h urban bus average
DEFAULT_WALKING_SPEED_MPS = 1.4


class SourceTag(str, Enum):
    EXACT = "exact"
    FULL_SHAPE_FALLBACK = "full-shape-fallback"
    ENGINE_FALLBACK = "engine-fallback"
    STRAIGHT_LINE_FALLBACK = "straight-line-fallback"


@dataclass
class SegmentExtractionResult:
    polyline: Polyline
    distance_m: float
    duration_s: int
    source: SourceTag
    start_idx: int | None = None  # shape indices, when cut from a shape
    end_idx: int | None = None


class ShapeSegmentExtractor:
    """Cuts leg geometry out of shapes, with engine and straight-line fallbacks."""

    def __init__(
        self,
        engines: dict[str, RouteProvider] | None = None,
        bus_speed_mps: float = DEFAULT_BUS_SPEED_MPS,
        walking_speed_mps: float = DEFAULT_WALKING_SPEED_MPS,
        engine_timeout: float = 8.0,
    ) -> None:
        # mode ("bus" | "walk") -> routing engine used when no shape is available
        self.engines = engines or {}
        self.bus_speed_mps = bus_speed_mps
        self.walking_speed_mps = walking_speed_mps
        self.engine_timeout = engine_timeout

    def speed_for(self, mode: str) -> float:
        return self.walking_speed_mps if mode == "walk" else self.bus_speed_mps

    @staticmethod
    def nearest_index(shape: Polyline, point: GeoPoint) -> tuple[int, float]:
        """Index and haversine distance (m) of the shape point closest to point."""
        best_idx = 0
        best_dist = float("inf")
        for i, p in enumerate(shape):
            d = haversine_m(point, p)
            if d < best_dist:
                best_dist = d
                best_idx = i
        return best_idx, best_dist

    def extract(
        self,
        shape: Polyline,
        from_stop: GeoPoint,
        to_stop: GeoPoint,
        mode: str = "bus",
    ) -> SegmentExtractionResult:
        """Slice the shape between the points nearest each stop."""
        if not shape:
            raise ValueError("Cannot extract a segment from an empty shape")

        start_idx, _ = self.nearest_index(shape, from_stop)
        end_idx, _ = self.nearest_index(shape, to_stop)

        if start_idx < end_idx:
            polyline = list(shape[start_idx:end_idx + 1])
            source = SourceTag.EXACT
        else:
            logger.warning(
                "Inverted shape indices start=%d end=%d, using full shape (%d pts)",
                start_idx, end_idx, len(shape),
            )
            polyline = list(shape)
            source = SourceTag.FULL_SHAPE_FALLBACK

        distance = polyline_length_m(polyline)
        return SegmentExtractionResult(
            polyline=polyline,
            distance_m=distance,
            duration_s=int(distance / self.speed_for(mode)),
            source=source,
            start_idx=start_idx,
            end_idx=end_idx,
        )

    def straight_line(self, from_stop: GeoPoint, to_stop: GeoPoint, mode: str = "bus") -> SegmentExtractionResult:
        distance = haversine_m(from_stop, to_stop)
        return SegmentExtractionResult(
            polyline=[from_stop, to_stop],
            distance_m=distance,
            duration_s=int(distance / self.speed_for(mode)),
            source=SourceTag.STRAIGHT_LINE_FALLBACK,
        )

    async def extract_leg(
        self,
        from_stop: GeoPoint,
        to_stop: GeoPoint,
        shape: Polyline | None = None,
        mode: str = "bus",
    ) -> SegmentExtractionResult:
        """Best available geometry for a leg; never raises."""
        if shape and len(shape) >= 2:
            return self.extract(shape, from_stop, to_stop, mode)

        engine = self.engines.get(mode)
        if engine is not None:
            try:
                route = await asyncio.wait_for(
                    engine.get_route(from_stop, to_stop), timeout=self.engine_timeout,
                )
                if len(route.polyline) >= 2:
                    distance = route.distance_m or polyline_length_m(route.polyline)
                    duration = route.duration_s or int(distance / self.speed_for(mode))
                    return SegmentExtractionResult(
                        polyline=route.polyline,
                        distance_m=distance,
                        duration_s=duration,
                        source=SourceTag.ENGINE_FALLBACK,
                    )
                logger.warning("Engine %s returned %d point(s) for %s leg", engine.name, len(route.polyline), mode)
            except asyncio.TimeoutError:
                logger.warning("Engine %s timed out after %.1fs for %s leg", engine.name, self.engine_timeout, mode)
            except ProviderError as e:
                logger.warning("Engine %s failed for %s leg: %s", engine.name, mode, e)
            except Exception:
                logger.exception("Unexpected error from engine %s", engine.name)

        logger.warning("Using straight-line fallback for %s leg", mode)
        return self.straight_line(from_stop, to_stop, mode)
