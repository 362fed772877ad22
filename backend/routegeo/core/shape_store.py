"""Read access to GTFS shapes and stops."""

import logging
from typing import Protocol

from sqlalchemy import select

from routegeo.core.exceptions import ShapeNotFound
from routegeo.core.geo import GeoPoint
from routegeo.models.tables import GtfsRoute, GtfsShapePoint, GtfsStop, GtfsTrip

logger = logging.getLogger(__name__)


class ShapeStore(Protocol):
    async def get_shape_id_for_route(self, route_number: str) -> str:
        ...

    async def get_shape_points(self, shape_id: str) -> list[GeoPoint]:
        ...

    async def get_stop_coordinates(self, stop_code: str) -> GeoPoint:
        ...


class SqlShapeStore:
    """ShapeStore backed by the GTFS tables through an async session factory."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def get_shape_id_for_route(self, route_number: str) -> str:
        stmt = (
            select(GtfsTrip.shape_id)
            .join(GtfsRoute, GtfsTrip.route_id == GtfsRoute.route_id)
            .where(GtfsRoute.route_short_name == route_number, GtfsTrip.shape_id.is_not(None))
            .order_by(GtfsTrip.direction_id, GtfsTrip.trip_id)
            .limit(1)
        )
        async with self.session_factory() as session:
            shape_id = (await session.execute(stmt)).scalar_one_or_none()
        if not shape_id:
            raise ShapeNotFound(f"No shape for route {route_number}")
        logger.debug("Route %s -> shape %s", route_number, shape_id)
        return shape_id

    async def get_shape_points(self, shape_id: str) -> list[GeoPoint]:
        stmt = (
            select(GtfsShapePoint.shape_pt_lat, GtfsShapePoint.shape_pt_lon)
            .where(GtfsShapePoint.shape_id == shape_id)
            .order_by(GtfsShapePoint.shape_pt_sequence)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        if not rows:
            raise ShapeNotFound(f"Shape {shape_id} has no points")
        return [GeoPoint(lat=r.shape_pt_lat, lon=r.shape_pt_lon) for r in rows]

    async def get_stop_coordinates(self, stop_code: str) -> GeoPoint:
        stmt = (
            select(GtfsStop.stop_lat, GtfsStop.stop_lon)
            .where(GtfsStop.stop_code == stop_code)
            .limit(1)
        )
        async with self.session_factory() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            raise ShapeNotFound(f"Stop {stop_code} not found")
        return GeoPoint(lat=row.stop_lat, lon=row.stop_lon)
