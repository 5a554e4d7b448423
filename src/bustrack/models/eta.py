"""Pydantic models for arrival projections."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ProjectionConfidence(str, Enum):
    """How much the projection should be trusted.

    HIGH:   on-route, moving, projected at smoothed speed
    MEDIUM: on-route, stopped or crawling, projected at scheduled/average speed
    LOW:    off-route, straight-line heuristic
    """

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UnavailableReason(str, Enum):
    """Why no projection could be produced for a vehicle."""

    UNKNOWN_VEHICLE = "unknown_vehicle"
    INACTIVE = "inactive"
    STALE = "stale"
    NO_ROUTE = "no_route"
    ROUTE_UNAVAILABLE = "route_unavailable"
    NO_POSITION = "no_position"
    PROJECTION_FAILED = "projection_failed"


class ETAProjection(BaseModel):
    """Projected arrival of one vehicle at one downstream stop."""

    vehicle_id: str
    stop_id: str
    stop_name: str
    stop_sequence: int
    distance_remaining_m: float = Field(description="Route distance still to travel to the stop")
    minutes_remaining: float = Field(
        description="Minutes until arrival, one decimal; stops seconds apart can tie"
    )
    arrival_at: datetime = Field(
        description="Projected arrival; strictly increases from stop to stop"
    )
    progress: float = Field(description="Fraction of the route completed (0.0 - 1.0)")
    confidence: ProjectionConfidence


class ETAResult(BaseModel):
    """Projections for every downstream stop, or the reason there are none.

    An available result with no projections means the vehicle is past its
    route's final stop.
    """

    vehicle_id: str
    available: bool
    unavailable_reason: UnavailableReason | None = None
    route_id: str | None = None
    projections: list[ETAProjection] = []
    computed_at: datetime

    @classmethod
    def unavailable(
        cls,
        vehicle_id: str,
        reason: UnavailableReason,
        computed_at: datetime,
        route_id: str | None = None,
    ) -> "ETAResult":
        return cls(
            vehicle_id=vehicle_id,
            available=False,
            unavailable_reason=reason,
            route_id=route_id,
            computed_at=computed_at,
        )
