"""Route geometry REST API endpoints."""

from fastapi import APIRouter, HTTPException

from routegeo.core.exceptions import InvalidCoordinates, OptionNotFound, ProviderUnavailable
from routegeo.core.geo import GeoPoint, to_wire
from routegeo.core.resolver import ResolvedRoute
from routegeo.schemas.route import (
    ItineraryOptionOut,
    LegOut,
    OptionDetailRequest,
    ResolveRequest,
    RouteResponse,
)

router = APIRouter(prefix="/api/routes", tags=["routes"])

# Will be set by main.py
resolver = None


def to_response(resolved: ResolvedRoute) -> RouteResponse:
    payload = resolved.payload
    return RouteResponse(
        geometry=to_wire(list(payload.geometry)),
        distance_meters=round(payload.distance_m, 1),
        duration_seconds=payload.duration_s,
        source=payload.source,
        cache_hit=resolved.cache_hit,
        original_points=payload.original_points,
        legs=[
            LegOut(
                mode=leg.mode,
                route_number=leg.route_number,
                geometry=to_wire(list(leg.geometry)),
                distance_meters=round(leg.distance_m, 1),
                duration_seconds=leg.duration_s,
                source=leg.source,
            )
            for leg in payload.legs
        ],
    )


def _require_resolver():
    if resolver is None:
        raise HTTPException(status_code=503, detail="Resolver not initialized")
    return resolver


def _points(body: ResolveRequest) -> tuple[GeoPoint, GeoPoint]:
    return (
        GeoPoint(lat=body.origin_lat, lon=body.origin_lon),
        GeoPoint(lat=body.dest_lat, lon=body.dest_lon),
    )


@router.post("/resolve", response_model=RouteResponse)
async def resolve_route(body: ResolveRequest):
    """Road geometry between two points, served from cache when possible."""
    r = _require_resolver()
    origin, dest = _points(body)
    try:
        resolved = await r.resolve(origin, dest)
    except InvalidCoordinates as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail={"message": str(e), "attempted": e.attempted})
    return to_response(resolved)


@router.post("/options", response_model=list[ItineraryOptionOut])
async def list_options(body: ResolveRequest):
    """Phase 1: itinerary summaries without geometry."""
    r = _require_resolver()
    origin, dest = _points(body)
    try:
        options = await r.list_options(origin, dest)
    except InvalidCoordinates as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail={"message": str(e), "attempted": e.attempted})
    return [
        ItineraryOptionOut(
            index=o.index,
            route_numbers=o.route_numbers,
            total_duration_minutes=o.total_duration_minutes,
            summary=o.summary,
            walking_time_minutes=o.walking_time_minutes,
            transfers=o.transfers,
        )
        for o in options
    ]


@router.post("/options/detail", response_model=RouteResponse)
async def option_detail(body: OptionDetailRequest):
    """Phase 2: full leg geometry for the selected itinerary option."""
    r = _require_resolver()
    origin, dest = _points(body)
    try:
        resolved = await r.resolve_option(origin, dest, body.selected_option_index)
    except InvalidCoordinates as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OptionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail={"message": str(e), "attempted": e.attempted})
    return to_response(resolved)
