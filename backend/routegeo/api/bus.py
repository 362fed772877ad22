"""Bus stop-to-stop geometry endpoint."""

from fastapi import APIRouter, HTTPException

from routegeo.api.routes import to_response
from routegeo.core.exceptions import InvalidCoordinates, ProviderUnavailable, ShapeNotFound
from routegeo.schemas.route import BusSegmentRequest, RouteResponse

router = APIRouter(prefix="/api/bus", tags=["bus"])

# Will be set by main.py
resolver = None


@router.post("/geometry/segment", response_model=RouteResponse)
async def bus_segment(body: BusSegmentRequest):
    """Geometry of a bus route between two stops, cut from its shape."""
    if resolver is None:
        raise HTTPException(status_code=503, detail="Resolver not initialized")
    try:
        resolved = await resolver.resolve_bus_leg(body.route_number, body.from_stop_code, body.to_stop_code)
    except ShapeNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidCoordinates as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return to_response(resolved)
