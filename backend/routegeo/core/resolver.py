"""Route resolution: cache lookup, provider fallback chain, simplification, store.

    PENDING -> CACHE_LOOKUP -> HIT -> DONE
                            -> MISS -> PROVIDER_QUERY -> SIMPLIFY -> STORE -> DONE

Provider calls run outside the cache lock, each bounded by a timeout, and a
failing provider is never retried within the same resolution. Failures and
straight-line geometry are never cached.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from routegeo.core.exceptions import (
    InvalidGeometry,
    OptionNotFound,
    ProviderError,
    ProviderUnavailable,
    ShapeNotFound,
)
from routegeo.core.geo import GeoPoint, Polyline, validate_point
from routegeo.core.payload import (
    SOURCE_ENGINE,
    SOURCE_ITINERARY,
    SOURCE_SHAPE,
    SOURCE_STRAIGHT_LINE,
    LegPayload,
    RoutePayload,
)
from routegeo.core.providers import (
    ItineraryLeg,
    ItineraryOption,
    ItineraryProvider,
    ProviderRoute,
    RouteProvider,
)
from routegeo.core.route_cache import RouteCache
from routegeo.core.segment_extractor import SegmentExtractionResult, ShapeSegmentExtractor, SourceTag
from routegeo.core.shape_store import ShapeStore
from routegeo.core.simplifier import DEFAULT_EPSILON, compress, compress_multiple

logger = logging.getLogger(__name__)

# Leg tag -> payload provenance
_LEG_SOURCE = {
    SourceTag.EXACT: SOURCE_SHAPE,
    SourceTag.FULL_SHAPE_FALLBACK: SOURCE_SHAPE,
    SourceTag.ENGINE_FALLBACK: SOURCE_ENGINE,
    SourceTag.STRAIGHT_LINE_FALLBACK: SOURCE_STRAIGHT_LINE,
}


class ResolveStage(str, Enum):
    PENDING = "pending"
    CACHE_LOOKUP = "cache_lookup"
    HIT = "hit"
    MISS = "miss"
    PROVIDER_QUERY = "provider_query"
    SIMPLIFY = "simplify"
    STORE = "store"
    DONE = "done"


@dataclass
class ResolvedRoute:
    payload: RoutePayload
    cache_hit: bool
    key: str
    stages: list[ResolveStage] = field(default_factory=list)


def _join(polylines: list[Polyline]) -> Polyline:
    """Concatenate leg polylines, dropping a repeated joint point."""
    out: Polyline = []
    for points in polylines:
        if out and points and out[-1] == points[0]:
            points = points[1:]
        out.extend(points)
    return out


class RouteResolver:
    """Resolves origin/destination routes, bus legs and itineraries through the cache."""

    def __init__(
        self,
        cache: RouteCache,
        providers: list[RouteProvider],
        extractor: ShapeSegmentExtractor | None = None,
        shape_store: ShapeStore | None = None,
        itinerary: ItineraryProvider | None = None,
        epsilon: float = DEFAULT_EPSILON,
        provider_timeout: float = 8.0,
        ttl: float | None = None,
    ) -> None:
        self.cache = cache
        self.providers = providers  # priority order
        self.extractor = extractor or ShapeSegmentExtractor(engine_timeout=provider_timeout)
        self.shape_store = shape_store
        self.itinerary = itinerary
        self.epsilon = epsilon
        self.provider_timeout = provider_timeout
        self.ttl = ttl

    # ------------------------------------------------------------------
    # Origin/destination
    # ------------------------------------------------------------------

    async def resolve(self, origin: GeoPoint, dest: GeoPoint) -> ResolvedRoute:
        """Cached route between two points, querying providers on a miss.

        Raises InvalidCoordinates for bad input and ProviderUnavailable when
        every provider fails.
        """
        stages = [ResolveStage.PENDING]
        validate_point(origin)
        validate_point(dest)

        stages.append(ResolveStage.CACHE_LOOKUP)
        key = self.cache.key_for(origin, dest)
        cached = self.cache.get_by_key(key)
        if cached is not None:
            stages += [ResolveStage.HIT, ResolveStage.DONE]
            return ResolvedRoute(payload=cached, cache_hit=True, key=key, stages=stages)

        stages += [ResolveStage.MISS, ResolveStage.PROVIDER_QUERY]
        provider, route = await self._query_providers(origin, dest)

        stages.append(ResolveStage.SIMPLIFY)
        simplified = compress(route.polyline, self.epsilon)
        payload = RoutePayload(
            geometry=tuple(simplified),
            distance_m=route.distance_m,
            duration_s=route.duration_s,
            source=provider.source,
            original_points=len(route.polyline),
        )
        logger.info(
            "Resolved route via %s: %d -> %d pts, %.0fm, %ds",
            provider.name, len(route.polyline), len(simplified), route.distance_m, route.duration_s,
        )

        if payload.source != SOURCE_STRAIGHT_LINE:
            stages.append(ResolveStage.STORE)
            self.cache.set_by_key(key, payload, self.ttl)
        stages.append(ResolveStage.DONE)
        return ResolvedRoute(payload=payload, cache_hit=False, key=key, stages=stages)

    async def _query_providers(
        self, origin: GeoPoint, dest: GeoPoint,
    ) -> tuple[RouteProvider, ProviderRoute]:
        attempted: list[str] = []
        for provider in self.providers:
            attempted.append(provider.name)
            try:
                route = await asyncio.wait_for(
                    provider.get_route(origin, dest), timeout=self.provider_timeout,
                )
                if len(route.polyline) < 2:
                    raise InvalidGeometry(f"{len(route.polyline)} point(s)")
                if route.distance_m <= 0:
                    raise InvalidGeometry("zero distance")
                return provider, route
            except asyncio.TimeoutError:
                logger.warning(
                    "Provider %s timed out after %.1fs, trying next", provider.name, self.provider_timeout,
                )
            except ProviderError as e:
                logger.warning("Provider %s failed (%s), trying next", provider.name, e)
            except Exception:
                logger.exception("Unexpected error from provider %s", provider.name)

        raise ProviderUnavailable(
            f"All {len(attempted)} route providers failed", attempted=attempted,
        )

    # ------------------------------------------------------------------
    # Stop-to-stop bus legs
    # ------------------------------------------------------------------

    async def resolve_bus_leg(
        self, route_number: str, from_stop_code: str, to_stop_code: str,
    ) -> ResolvedRoute:
        """Geometry of one bus route between two stops, cut from its GTFS shape.

        Raises ShapeNotFound when either stop code is unknown.
        """
        if self.shape_store is None:
            raise ProviderUnavailable("No shape store configured", attempted=["shape"])

        stages = [ResolveStage.PENDING]
        from_stop = validate_point(await self._stop_coordinates(from_stop_code))
        to_stop = validate_point(await self._stop_coordinates(to_stop_code))

        stages.append(ResolveStage.CACHE_LOOKUP)
        key = self.cache.key_for(from_stop, to_stop, variant=f"bus:{route_number}")
        cached = self.cache.get_by_key(key)
        if cached is not None:
            stages += [ResolveStage.HIT, ResolveStage.DONE]
            return ResolvedRoute(payload=cached, cache_hit=True, key=key, stages=stages)

        stages += [ResolveStage.MISS, ResolveStage.PROVIDER_QUERY]
        shape = await self._route_shape(route_number)
        result = await self.extractor.extract_leg(from_stop, to_stop, shape, mode="bus")

        stages.append(ResolveStage.SIMPLIFY)
        simplified = compress(result.polyline, self.epsilon)
        leg = LegPayload(
            mode="bus",
            geometry=tuple(simplified),
            distance_m=result.distance_m,
            duration_s=result.duration_s,
            source=result.source.value,
            route_number=route_number,
        )
        payload = RoutePayload(
            geometry=leg.geometry,
            distance_m=result.distance_m,
            duration_s=result.duration_s,
            source=_LEG_SOURCE[result.source],
            original_points=len(result.polyline),
            legs=(leg,),
        )
        logger.info(
            "Bus %s %s->%s: %s, %d -> %d pts",
            route_number, from_stop_code, to_stop_code, result.source.value,
            len(result.polyline), len(simplified),
        )

        if result.source is not SourceTag.STRAIGHT_LINE_FALLBACK:
            stages.append(ResolveStage.STORE)
            self.cache.set_by_key(key, payload, self.ttl)
        stages.append(ResolveStage.DONE)
        return ResolvedRoute(payload=payload, cache_hit=False, key=key, stages=stages)

    async def _stop_coordinates(self, stop_code: str) -> GeoPoint:
        try:
            return await self.shape_store.get_stop_coordinates(stop_code)
        except ShapeNotFound:
            raise
        except Exception as e:
            logger.exception("Stop lookup failed for %s", stop_code)
            raise ProviderUnavailable("Shape store unavailable", attempted=["shape"]) from e

    async def _route_shape(self, route_number: str) -> Polyline | None:
        try:
            shape_id = await self.shape_store.get_shape_id_for_route(route_number)
            return await self.shape_store.get_shape_points(shape_id)
        except Exception as e:
            logger.warning("No usable shape for route %s: %s", route_number, e)
            return None

    async def _shape_points(self, shape_id: str) -> Polyline | None:
        try:
            return await self.shape_store.get_shape_points(shape_id)
        except Exception as e:
            logger.warning("Shape %s unavailable: %s", shape_id, e)
            return None

    # ------------------------------------------------------------------
    # Two-phase itineraries
    # ------------------------------------------------------------------

    async def list_options(self, origin: GeoPoint, dest: GeoPoint) -> list[ItineraryOption]:
        """Phase 1: lightweight itinerary summaries, no geometry."""
        validate_point(origin)
        validate_point(dest)
        if self.itinerary is None:
            raise ProviderUnavailable("No itinerary service configured", attempted=[])
        try:
            return await asyncio.wait_for(
                self.itinerary.list_options(origin, dest), timeout=self.provider_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Itinerary options timed out after %.1fs", self.provider_timeout)
        except ProviderError as e:
            logger.warning("Itinerary options failed: %s", e)
        except Exception:
            logger.exception("Unexpected error from itinerary options")
        raise ProviderUnavailable("Itinerary service unavailable", attempted=[self.itinerary.name])

    async def resolve_option(self, origin: GeoPoint, dest: GeoPoint, index: int) -> ResolvedRoute:
        """Phase 2: full geometry for the chosen itinerary option.

        Raises OptionNotFound when the service has no option at index.
        """
        stages = [ResolveStage.PENDING]
        validate_point(origin)
        validate_point(dest)
        if index < 0:
            raise OptionNotFound(f"Itinerary option {index} not found")
        if self.itinerary is None:
            raise ProviderUnavailable("No itinerary service configured", attempted=[])

        stages.append(ResolveStage.CACHE_LOOKUP)
        key = self.cache.key_for(origin, dest, variant=f"option:{index}")
        cached = self.cache.get_by_key(key)
        if cached is not None:
            stages += [ResolveStage.HIT, ResolveStage.DONE]
            return ResolvedRoute(payload=cached, cache_hit=True, key=key, stages=stages)

        stages += [ResolveStage.MISS, ResolveStage.PROVIDER_QUERY]
        try:
            legs = await asyncio.wait_for(
                self.itinerary.get_legs(origin, dest, index), timeout=self.provider_timeout,
            )
        except OptionNotFound:
            raise
        except asyncio.TimeoutError:
            logger.warning("Itinerary detail timed out after %.1fs", self.provider_timeout)
            raise ProviderUnavailable("Itinerary service timed out", attempted=[self.itinerary.name])
        except ProviderError as e:
            logger.warning("Itinerary detail failed: %s", e)
            raise ProviderUnavailable("Itinerary service unavailable", attempted=[self.itinerary.name]) from e
        except Exception as e:
            logger.exception("Unexpected error from itinerary detail")
            raise ProviderUnavailable("Itinerary service unavailable", attempted=[self.itinerary.name]) from e

        results = await asyncio.gather(*(self._leg_geometry(leg) for leg in legs))

        stages.append(ResolveStage.SIMPLIFY)
        simplified = compress_multiple([r.polyline for r in results], self.epsilon)
        leg_payloads = tuple(
            LegPayload(
                mode=leg.mode,
                geometry=tuple(points),
                distance_m=result.distance_m,
                duration_s=leg.duration_s or result.duration_s,
                source=result.source.value,
                route_number=leg.route_number,
            )
            for leg, result, points in zip(legs, results, simplified)
        )
        payload = RoutePayload(
            geometry=tuple(_join(simplified)),
            distance_m=sum(lp.distance_m for lp in leg_payloads),
            duration_s=sum(lp.duration_s for lp in leg_payloads),
            source=SOURCE_ITINERARY,
            original_points=sum(len(r.polyline) for r in results),
            legs=leg_payloads,
        )
        logger.info(
            "Itinerary option %d: %d legs (%s)",
            index, len(leg_payloads), ", ".join(lp.source for lp in leg_payloads),
        )

        if all(r.source is not SourceTag.STRAIGHT_LINE_FALLBACK for r in results):
            stages.append(ResolveStage.STORE)
            self.cache.set_by_key(key, payload, self.ttl)
        stages.append(ResolveStage.DONE)
        return ResolvedRoute(payload=payload, cache_hit=False, key=key, stages=stages)

    async def _leg_geometry(self, leg: ItineraryLeg) -> SegmentExtractionResult:
        """Shape points for bus legs when known, else the leg's own geometry, else the ladder."""
        mode = "walk" if leg.mode == "walk" else "bus"
        shape: Polyline | None = None
        if mode == "bus" and leg.shape_id and self.shape_store is not None:
            shape = await self._shape_points(leg.shape_id)
        if not shape and len(leg.geometry) >= 2:
            shape = leg.geometry
        return await self.extractor.extract_leg(leg.start, leg.end, shape, mode=mode)
