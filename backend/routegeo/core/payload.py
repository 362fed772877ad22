"""Immutable route results stored in the cache."""

from dataclasses import dataclass

from routegeo.core.geo import GeoPoint, from_wire, to_wire

# Provenance tags for a RoutePayload
SOURCE_ENGINE = "engine"
SOURCE_SHAPE = "shape"
SOURCE_SCRAPE = "scrape-fallback"
SOURCE_STRAIGHT_LINE = "straight-line"
SOURCE_ITINERARY = "itinerary"


@dataclass(frozen=True)
class LegPayload:
    mode: str  # "walk" | "bus"
    geometry: tuple[GeoPoint, ...]
    distance_m: float
    duration_s: int
    source: str  # SourceTag value
    route_number: str = ""

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "geometry": to_wire(list(self.geometry)),
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "source": self.source,
            "route_number": self.route_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LegPayload":
        return cls(
            mode=data["mode"],
            geometry=tuple(from_wire(data["geometry"])),
            distance_m=float(data["distance_m"]),
            duration_s=int(data["duration_s"]),
            source=data["source"],
            route_number=data.get("route_number", ""),
        )


@dataclass(frozen=True)
class RoutePayload:
    geometry: tuple[GeoPoint, ...]
    distance_m: float
    duration_s: int
    source: str
    original_points: int = 0  # point count before simplification
    legs: tuple[LegPayload, ...] = ()

    def to_dict(self) -> dict:
        return {
            "geometry": to_wire(list(self.geometry)),
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "source": self.source,
            "original_points": self.original_points,
            "legs": [leg.to_dict() for leg in self.legs],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoutePayload":
        return cls(
            geometry=tuple(from_wire(data["geometry"])),
            distance_m=float(data["distance_m"]),
            duration_s=int(data["duration_s"]),
            source=data["source"],
            original_points=int(data.get("original_points", 0)),
            legs=tuple(LegPayload.from_dict(leg) for leg in data.get("legs", [])),
        )
