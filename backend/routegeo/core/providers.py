"""Route providers: the external sources a resolver falls back through.

Every provider speaks (lat, lon) internally and raises ProviderError for any
transport or parse problem, so the resolver never sees a raw httpx error.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from routegeo.core.exceptions import OptionNotFound, ProviderError
from routegeo.core.geo import GeoPoint, Polyline, from_wire, haversine_m, polyline_length_m
from routegeo.core.payload import SOURCE_ENGINE, SOURCE_SCRAPE, SOURCE_STRAIGHT_LINE

logger = logging.getLogger(__name__)


@dataclass
class ProviderRoute:
    polyline: Polyline
    distance_m: float
    duration_s: int


class RouteProvider(Protocol):
    name: str
    source: str  # provenance tag stamped on cached payloads

    async def get_route(self, origin: GeoPoint, dest: GeoPoint) -> ProviderRoute:
        ...


class OsrmProvider:
    """Road-snapped geometry from an OSRM /route endpoint."""

    source = SOURCE_ENGINE

    def __init__(
        self,
        base_url: str,
        profile: str = "driving",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.profile = profile
        self.name = f"osrm-{profile}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get_route(self, origin: GeoPoint, dest: GeoPoint) -> ProviderRoute:
        # OSRM wants lon,lat
        coords = f"{origin.lon:.6f},{origin.lat:.6f};{dest.lon:.6f},{dest.lat:.6f}"
        try:
            resp = await self._client.get(
                f"/route/v1/{self.profile}/{coords}",
                params={"overview": "full", "geometries": "geojson"},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"OSRM request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ProviderError("OSRM returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ProviderError(f"OSRM returned {type(data).__name__}")
        if data.get("code") != "Ok" or not data.get("routes"):
            raise ProviderError(f"OSRM error: {data.get('message', data.get('code', 'Unknown error'))}")

        route = data["routes"][0]
        try:
            polyline = from_wire(route["geometry"]["coordinates"])
            distance = float(route["distance"])
            duration = int(round(float(route["duration"])))
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise ProviderError(f"Malformed OSRM route: {e}") from e

        logger.debug("OSRM %s route: %d pts, %.0fm", self.profile, len(polyline), distance)
        return ProviderRoute(polyline=polyline, distance_m=distance, duration_s=duration)


@dataclass
class ItineraryOption:
    """Phase-1 summary of an itinerary: no geometry, cheap to list."""

    index: int
    route_numbers: list[str]
    total_duration_minutes: int
    summary: str = ""
    walking_time_minutes: int = 0
    transfers: int = 0


@dataclass
class ItineraryLeg:
    mode: str  # "walk" | "bus"
    start: GeoPoint
    end: GeoPoint
    route_number: str = ""
    shape_id: str = ""
    geometry: Polyline = field(default_factory=list)
    distance_m: float = 0.0
    duration_s: int = 0


def _parse_point(raw: dict) -> GeoPoint:
    return GeoPoint(lat=float(raw["lat"]), lon=float(raw["lon"]))


class ItineraryProvider:
    """Client for the itinerary service that fronts the scraped transit planner.

    Serves two-phase lookups (options, then legs for the chosen option) and,
    as a plain RouteProvider, the concatenated legs of the first option.
    """

    name = "itinerary"
    source = SOURCE_SCRAPE

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: dict) -> dict:
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"Itinerary service {path} failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ProviderError(f"Itinerary service {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ProviderError(f"Itinerary service {path} returned {type(data).__name__}")
        return data

    @staticmethod
    def _od_body(origin: GeoPoint, dest: GeoPoint) -> dict:
        return {
            "origin_lat": origin.lat,
            "origin_lon": origin.lon,
            "dest_lat": dest.lat,
            "dest_lon": dest.lon,
        }

    async def list_options(self, origin: GeoPoint, dest: GeoPoint) -> list[ItineraryOption]:
        data = await self._post("/api/itinerary/options", self._od_body(origin, dest))
        raw_options = data.get("options", [])
        if not isinstance(raw_options, list):
            raise ProviderError(f"Itinerary options must be a list, got {type(raw_options).__name__}")
        options = []
        for i, item in enumerate(raw_options):
            if not isinstance(item, dict):
                raise ProviderError(f"Malformed itinerary option at {i}: {type(item).__name__}")
            try:
                options.append(ItineraryOption(
                    index=int(item.get("index", i)),
                    route_numbers=[str(r) for r in item.get("route_numbers", [])],
                    total_duration_minutes=int(item.get("total_duration_minutes", 0)),
                    summary=str(item.get("summary", "")),
                    walking_time_minutes=int(item.get("walking_time_minutes", 0)),
                    transfers=int(item.get("transfers", 0)),
                ))
            except (ValueError, TypeError) as e:
                logger.debug("Skipping malformed itinerary option: %s", e)
                continue
        logger.info("Fetched %d itinerary options", len(options))
        return options

    async def get_legs(self, origin: GeoPoint, dest: GeoPoint, index: int) -> list[ItineraryLeg]:
        body = self._od_body(origin, dest)
        body["selected_option_index"] = index
        try:
            data = await self._post("/api/itinerary/detail", body)
        except ProviderError as e:
            cause = e.__cause__
            if isinstance(cause, httpx.HTTPStatusError) and cause.response.status_code == 404:
                raise OptionNotFound(f"Itinerary option {index} not found") from cause
            raise

        raw_legs = data.get("legs", [])
        if not isinstance(raw_legs, list):
            raise ProviderError(f"Itinerary legs must be a list, got {type(raw_legs).__name__}")
        legs = []
        try:
            for item in raw_legs:
                if not isinstance(item, dict):
                    raise ProviderError(f"Malformed itinerary leg: {type(item).__name__}")
                legs.append(ItineraryLeg(
                    mode=str(item.get("type", "walk")),
                    start=_parse_point(item["from"]),
                    end=_parse_point(item["to"]),
                    route_number=str(item.get("route_number") or ""),
                    shape_id=str(item.get("shape_id") or ""),
                    geometry=from_wire(item.get("geometry") or []),
                    distance_m=float(item.get("distance_meters", 0.0)),
                    duration_s=int(item.get("duration_seconds", 0)),
                ))
        except (KeyError, ValueError, TypeError, IndexError, AttributeError) as e:
            raise ProviderError(f"Malformed itinerary legs: {e}") from e
        if not legs:
            raise OptionNotFound(f"Itinerary option {index} has no legs")
        return legs

    async def get_route(self, origin: GeoPoint, dest: GeoPoint) -> ProviderRoute:
        options = await self.list_options(origin, dest)
        if not options:
            raise ProviderError("Itinerary service returned no options")
        try:
            legs = await self.get_legs(origin, dest, options[0].index)
        except OptionNotFound as e:
            raise ProviderError(str(e)) from e

        polyline: Polyline = []
        for leg in legs:
            points = leg.geometry or [leg.start, leg.end]
            if polyline and points and polyline[-1] == points[0]:
                points = points[1:]
            polyline.extend(points)

        distance = sum(leg.distance_m for leg in legs) or polyline_length_m(polyline)
        duration = sum(leg.duration_s for leg in legs) or options[0].total_duration_minutes * 60
        return ProviderRoute(polyline=polyline, distance_m=distance, duration_s=duration)


class StraightLineProvider:
    """Last-resort provider: a 2-point line at an assumed speed."""

    name = "straight-line"
    source = SOURCE_STRAIGHT_LINE

    def __init__(self, speed_mps: float = 1.4) -> None:
        self.speed_mps = speed_mps

    async def get_route(self, origin: GeoPoint, dest: GeoPoint) -> ProviderRoute:
        distance = haversine_m(origin, dest)
        return ProviderRoute(
            polyline=[origin, dest],
            distance_m=distance,
            duration_s=int(distance / self.speed_mps),
        )
