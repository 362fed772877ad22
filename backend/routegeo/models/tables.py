"""GTFS tables read by the shape store."""

from sqlalchemy import Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from routegeo.models.base import Base


class GtfsRoute(Base):
    __tablename__ = "gtfs_routes"

    route_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    route_short_name: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    route_long_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    trips: Mapped[list["GtfsTrip"]] = relationship(back_populates="route")


class GtfsTrip(Base):
    __tablename__ = "gtfs_trips"

    trip_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    route_id: Mapped[str] = mapped_column(String(64), ForeignKey("gtfs_routes.route_id"), nullable=False)
    shape_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    direction_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0=outbound, 1=inbound

    route: Mapped["GtfsRoute"] = relationship(back_populates="trips")


class GtfsShapePoint(Base):
    __tablename__ = "gtfs_shapes"
    __table_args__ = (
        Index("ix_shapes_id_seq", "shape_id", "shape_pt_sequence"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shape_id: Mapped[str] = mapped_column(String(64), nullable=False)
    shape_pt_lat: Mapped[float] = mapped_column(Float, nullable=False)
    shape_pt_lon: Mapped[float] = mapped_column(Float, nullable=False)
    shape_pt_sequence: Mapped[int] = mapped_column(Integer, nullable=False)


class GtfsStop(Base):
    __tablename__ = "gtfs_stops"

    stop_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stop_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    stop_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    stop_lat: Mapped[float] = mapped_column(Float, nullable=False)
    stop_lon: Mapped[float] = mapped_column(Float, nullable=False)
