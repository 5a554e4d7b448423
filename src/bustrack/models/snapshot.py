"""Pydantic models for fleet snapshots."""

from datetime import datetime

from pydantic import BaseModel, Field

from bustrack.models.eta import ETAResult
from bustrack.models.vehicle import VehicleState


class FleetEntry(BaseModel):
    """One vehicle's state and the ETAs derived from that same state."""

    vehicle: VehicleState
    eta: ETAResult


class FleetSnapshot(BaseModel):
    """Point-in-time read of every active vehicle plus its ETAs."""

    timestamp: datetime
    sequence: int = Field(description="Increments with every snapshot built")
    entries: list[FleetEntry] = []

    @property
    def vehicle_ids(self) -> list[str]:
        return [entry.vehicle.vehicle_id for entry in self.entries]

    def entry_for(self, vehicle_id: str) -> FleetEntry | None:
        for entry in self.entries:
            if entry.vehicle.vehicle_id == vehicle_id:
                return entry
        return None


class SnapshotDiff(BaseModel):
    """Entries that changed between two snapshots."""

    from_sequence: int | None = Field(
        default=None, description="Sequence of the previous snapshot, None for a full snapshot"
    )
    to_sequence: int
    timestamp: datetime
    changed: list[FleetEntry] = Field(
        default=[], description="New vehicles and vehicles whose state version moved"
    )
    removed: list[str] = Field(default=[], description="Vehicle ids no longer in the snapshot")

    @property
    def is_empty(self) -> bool:
        return not self.changed and not self.removed
