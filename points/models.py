"""
Points table model
"""
from sqlalchemy import Column, Float, Integer, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

from common.types import Point


Base = declarative_base()


class PointRecord(Base):
    """Persisted point of interest; (latitude, longitude, altitude) is unique."""
    __tablename__ = "points"
    __table_args__ = (
        UniqueConstraint("latitude", "longitude", "altitude", name="uq_points_position"),
    )

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    latitude = Column(Float, nullable=False, index=True)
    longitude = Column(Float, nullable=False)
    altitude = Column(Integer, nullable=False, default=0)


def row_to_point(row) -> Point:
    """Build a Point from a `points` row (ORM object or Core row mapping)."""
    return Point(
        name=row.name or "",
        lat=row.latitude,
        lon=row.longitude,
        alt_m=row.altitude,
        description=row.description or "",
        id=row.id,
    )


def point_values(p: Point) -> dict:
    """Column values for inserting `p` (id is always assigned by the database)."""
    return {
        "name": p.name,
        "description": p.description,
        "latitude": p.lat,
        "longitude": p.lon,
        "altitude": p.alt_m,
    }
