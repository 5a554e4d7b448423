"""Pydantic models for route geometry."""

from pydantic import BaseModel, ConfigDict, Field


class RouteStop(BaseModel):
    """One stop on a route, in travel order."""

    model_config = ConfigDict(frozen=True)

    stop_id: str
    name: str
    lat: float
    lng: float
    sequence: int = Field(description="Position of the stop in the route's stop order")
    distance_along_m: float | None = Field(
        default=None, description="Cumulative distance from the route origin in metres"
    )
    scheduled_offset_s: int | None = Field(
        default=None, description="Scheduled seconds after the first stop (from stop_times)"
    )


class RouteGeometry(BaseModel):
    """Ordered, immutable stop sequence for one route."""

    model_config = ConfigDict(frozen=True)

    route_id: str
    short_name: str | None = Field(default=None, description="Route number, e.g. '24'")
    long_name: str | None = Field(default=None, description="Full route name")
    stops: tuple[RouteStop, ...]
    is_active: bool = True
    average_speed_kmh: float | None = Field(
        default=None, description="Route average speed; falls back to the configured default"
    )

    @property
    def total_length_m(self) -> float:
        if not self.stops or self.stops[-1].distance_along_m is None:
            return 0.0
        return self.stops[-1].distance_along_m

    @property
    def display_name(self) -> str:
        if self.short_name and self.long_name:
            return f"{self.short_name} - {self.long_name}"
        return self.short_name or self.long_name or self.route_id


class RouteLocation(BaseModel):
    """Result of projecting a position onto a route's stop polyline."""

    model_config = ConfigDict(frozen=True)

    route_id: str
    distance_along_m: float = Field(description="Distance-along-route of the nearest point")
    offset_m: float = Field(description="Perpendicular distance from the polyline")
    segment_index: int = Field(description="Index of the stop that starts the nearest segment")
    beyond_end_m: float = Field(
        default=0.0, description="How far past the final stop the position lies"
    )
    last_stop_id: str | None = Field(default=None, description="Last stop at or behind the point")


# ---------------------------------------------------------------------------
# Tool response models
# ---------------------------------------------------------------------------


class RouteSummary(BaseModel):
    route_id: str
    short_name: str | None = None
    long_name: str | None = None
    is_active: bool
    stop_count: int
    length_m: float = Field(description="Distance from first to last stop in metres")
    active_vehicles: int = Field(default=0, description="Non-stale active vehicles on the route")


class ListRoutesResponse(BaseModel):
    routes: list[RouteSummary]
    count: int


class GetRouteStopsResponse(BaseModel):
    found: bool
    route: RouteSummary | None = None
    stops: list[RouteStop] = []
