"""Pydantic models for the GTFS-RT VehiclePositions feed.

Only the fields the ingest path consumes are modelled.
"""

from datetime import datetime

from pydantic import BaseModel


class TripDescriptor(BaseModel):
    """Trip the vehicle is serving."""

    trip_id: str | None = None
    route_id: str | None = None


class Position(BaseModel):
    """Geographic position of a vehicle."""

    latitude: float
    longitude: float
    bearing: float | None = None
    speed: float | None = None  # meters/second


class VehicleDescriptor(BaseModel):
    id: str | None = None
    label: str | None = None


class VehiclePosition(BaseModel):
    """Real-time position of a transit vehicle."""

    trip: TripDescriptor | None = None
    vehicle: VehicleDescriptor | None = None
    position: Position | None = None
    timestamp: int | None = None  # POSIX seconds


class FeedHeader(BaseModel):
    gtfs_realtime_version: str
    timestamp: int


class VehiclePositionsData(BaseModel):
    """Complete vehicle positions feed data."""

    header: FeedHeader
    vehicles: list[VehiclePosition] = []
    fetched_at: datetime
