from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from bustrack.models.eta import ETAResult
from bustrack.models.snapshot import FleetSnapshot
from bustrack.models.vehicle import VehicleState


class RejectionReason(str, Enum):
    """Why a position report was dropped at ingest."""

    UNKNOWN_VEHICLE = "unknown_vehicle"
    OUT_OF_ORDER = "out_of_order"
    IMPLAUSIBLE_VALUE = "implausible_value"


class IngestResult(BaseModel):
    """Outcome of ingesting one position report."""

    accepted: bool
    vehicle_id: str | None = None
    reason: RejectionReason | None = None
    detail: str | None = Field(default=None, description="Human-readable rejection detail")
    version: int | None = Field(
        default=None, description="Vehicle state version after an accepted report"
    )

    @classmethod
    def ok(cls, state: VehicleState) -> "IngestResult":
        return cls(accepted=True, vehicle_id=state.vehicle_id, version=state.version)

    @classmethod
    def rejected(
        cls, reason: RejectionReason, detail: str, vehicle_id: str | None = None
    ) -> "IngestResult":
        return cls(accepted=False, vehicle_id=vehicle_id, reason=reason, detail=detail)


class IngestStats(BaseModel):
    accepted: int = 0
    rejected: dict[RejectionReason, int] = Field(
        default_factory=dict, description="Rejected report counts per reason"
    )

    @property
    def total_rejected(self) -> int:
        return sum(self.rejected.values())


class GetVehicleResponse(BaseModel):
    found: bool
    vehicle: VehicleState | None = None
    eta: ETAResult | None = None


class GetFleetSnapshotResponse(BaseModel):
    snapshot: FleetSnapshot
    count: int = Field(description="Number of vehicles in the snapshot")
    route_id: str | None = Field(default=None, description="Route filter, if one was applied")


class HealthResponse(BaseModel):
    status: str = Field(description="'ok', 'degraded' (not running) or 'unavailable' (no registry)")
    version: str
    running: bool
    vehicles: int
    routes: int
    stale_vehicles: int
    subscribers: int
    ingest: IngestStats
    last_snapshot_at: datetime | None = None
