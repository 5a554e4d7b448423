"""Exception hierarchy for bustrack.

Ingest and projection errors are per-report / per-vehicle and are always
converted into result objects before they reach a caller. Only
:class:`RegistryUnavailableError` is fatal to the engine.
"""

from bustrack.models.eta import UnavailableReason
from bustrack.models.responses import RejectionReason


class FleetError(Exception):
    """Base exception for all bustrack errors."""


class RegistryUnavailableError(FleetError):
    """Route/vehicle reference data could not be loaded.

    There is no route geometry to project against, so the engine cannot start.
    """


class IngestRejectedError(FleetError):
    """A position report was dropped at ingest time."""

    reason: RejectionReason

    def __init__(self, message: str, *, vehicle_id: str | None = None) -> None:
        self.vehicle_id = vehicle_id
        super().__init__(message)


class UnknownVehicleError(IngestRejectedError):
    """Report for a vehicle id that is not in the registry."""

    reason = RejectionReason.UNKNOWN_VEHICLE


class OutOfOrderReportError(IngestRejectedError):
    """Report ordering key is not newer than the stored state.

    Raised for duplicate redelivery as well as for late, out-of-order delivery.
    """

    reason = RejectionReason.OUT_OF_ORDER

    def __init__(
        self,
        message: str,
        *,
        vehicle_id: str | None = None,
        stored_key: float | None = None,
        incoming_key: float | None = None,
    ) -> None:
        self.stored_key = stored_key
        self.incoming_key = incoming_key
        super().__init__(message, vehicle_id=vehicle_id)


class ImplausibleValueError(IngestRejectedError):
    """Report failed schema or sanity validation (position, speed, timestamp)."""

    reason = RejectionReason.IMPLAUSIBLE_VALUE


class ProjectionUnavailableError(FleetError):
    """No ETA can be produced for a vehicle."""

    def __init__(self, reason: UnavailableReason, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason.value)


class RouteUnavailableError(ProjectionUnavailableError):
    """Vehicle has no route, or its route is unknown or inactive."""
