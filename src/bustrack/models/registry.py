"""Reference data the engine projects against."""

from pydantic import BaseModel, Field

from bustrack.models.route import RouteGeometry
from bustrack.models.vehicle import VehicleRegistration


class FleetRegistry(BaseModel):
    """Route geometry and the roster of known vehicles."""

    routes: dict[str, RouteGeometry] = Field(default_factory=dict)
    vehicles: list[VehicleRegistration] = []

    @property
    def route_ids(self) -> list[str]:
        return sorted(self.routes)
