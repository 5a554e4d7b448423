"""Pydantic models for vehicles, position reports and state commands."""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator

from bustrack.models.route import RouteLocation


class VehicleStatus(str, Enum):
    """Operational status shown to dashboard consumers."""

    ON_TIME = "on-time"
    DELAYED = "delayed"
    OUT_OF_SERVICE = "out-of-service"


class Coordinates(BaseModel):
    """WGS84 position."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class PositionReport(BaseModel):
    """A single GPS report from a vehicle or feed.

    The ordering key decides whether a report supersedes stored state: the
    per-vehicle sequence number when the feed provides one, otherwise the
    report timestamp in epoch seconds. A feed is expected to use one or the
    other consistently for a given vehicle.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    vehicle_id: str
    lat: float = Field(validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(validation_alias=AliasChoices("lng", "lon", "longitude"))
    speed_kmh: float | None = Field(
        default=None, validation_alias=AliasChoices("speed_kmh", "speed")
    )
    heading_deg: float | None = Field(
        default=None, validation_alias=AliasChoices("heading_deg", "heading", "bearing")
    )
    timestamp: datetime
    sequence_number: int | None = Field(
        default=None, validation_alias=AliasChoices("sequence_number", "sequence", "seq")
    )

    @field_validator("vehicle_id")
    @classmethod
    def _normalize_vehicle_id(cls, value: str) -> str:
        vehicle_id = value.strip()
        if not vehicle_id:
            raise ValueError("vehicle_id must be non-empty")
        return vehicle_id

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def ordering_key(self) -> float:
        if self.sequence_number is not None:
            return float(self.sequence_number)
        return self.timestamp.timestamp()


class VehicleRegistration(BaseModel):
    """Vehicle entry from the external route/vehicle registry."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    label: str | None = Field(default=None, description="Bus number shown to riders")
    route_id: str | None = None
    is_active: bool = True


class VehicleState(BaseModel):
    """Authoritative current state of one vehicle.

    Records are immutable; every write produces a new record with ``version``
    incremented by one.
    """

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    label: str | None = None
    route_id: str | None = None

    # Last accepted report
    position: Coordinates | None = None
    speed_kmh: float | None = Field(default=None, description="Reported or derived speed")
    smoothed_speed_kmh: float | None = Field(
        default=None, description="Exponentially weighted speed over recent reports"
    )
    heading_deg: float | None = None
    last_report_at: datetime | None = Field(default=None, description="Report timestamp")
    ordering_key: float | None = None

    # Progress along the assigned route
    distance_along_m: float | None = None
    last_stop_id: str | None = Field(default=None, description="Last stop passed on the route")

    # Lifecycle
    service_status: VehicleStatus = Field(
        default=VehicleStatus.ON_TIME, description="Admin-set on-time/delayed status"
    )
    stale: bool = False
    is_active: bool = True
    registered_at: datetime | None = None
    last_seen_at: datetime | None = Field(
        default=None, description="Engine time the last report was accepted"
    )
    version: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> VehicleStatus:
        if self.stale or not self.is_active:
            return VehicleStatus.OUT_OF_SERVICE
        return self.service_status


# ---------------------------------------------------------------------------
# Typed state commands. The store applies these; nothing else mutates state.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpdatePosition:
    """Fold an accepted position report into the vehicle's state."""

    report: PositionReport
    location: RouteLocation | None = None


@dataclass(frozen=True)
class MarkStale:
    """Mark a vehicle out-of-service for missing reports.

    Applied only if ``last_seen_at`` still equals ``expected_last_seen_at``,
    so a report that lands between the sweep's read and this write wins.
    """

    expected_last_seen_at: datetime | None


@dataclass(frozen=True)
class Deactivate:
    """Take a vehicle out of the fleet (manual admin action)."""


@dataclass(frozen=True)
class Activate:
    """Return a deactivated vehicle to the fleet."""


@dataclass(frozen=True)
class SetServiceStatus:
    """Set the admin-controlled on-time/delayed status."""

    status: VehicleStatus

    def __post_init__(self) -> None:
        if self.status == VehicleStatus.OUT_OF_SERVICE:
            raise ValueError("out-of-service is derived from staleness or deactivation")


@dataclass(frozen=True)
class AssignRoute:
    """Move a vehicle to another route (or none). Resets route progress."""

    route_id: str | None


VehicleCommand = UpdatePosition | MarkStale | Deactivate | Activate | SetServiceStatus | AssignRoute
