"""Authoritative in-memory vehicle state.

This is the only component that writes vehicle state. Every write is a typed
command applied under the vehicle's shard lock and produces a new immutable
record, so readers never see a half-applied update.
"""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from bustrack.exceptions import OutOfOrderReportError, UnknownVehicleError
from bustrack.models.route import RouteLocation
from bustrack.models.vehicle import (
    Activate,
    AssignRoute,
    Coordinates,
    Deactivate,
    MarkStale,
    PositionReport,
    SetServiceStatus,
    UpdatePosition,
    VehicleCommand,
    VehicleRegistration,
    VehicleState,
)
from bustrack.services.geo_index import haversine_distance, initial_bearing

logger = logging.getLogger(__name__)

# Movement below this is GPS jitter; heading is not re-derived from it
MIN_HEADING_MOVE_M = 5.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _Shard:
    __slots__ = ("lock", "records")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.records: dict[str, VehicleState] = {}


class VehicleStateStore:
    """Concurrency-safe table of current vehicle state.

    Vehicle ids hash onto a fixed set of shards, each guarded by its own lock:
    writes to one vehicle are serialized, writes to vehicles on different
    shards proceed in parallel. Reads of a single vehicle take no lock.
    """

    def __init__(
        self,
        *,
        shards: int = 64,
        smoothing_alpha: float = 0.3,
        max_speed_kmh: float = 150.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        if not 0 < smoothing_alpha <= 1:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        self._shards = [_Shard() for _ in range(shards)]
        self._alpha = smoothing_alpha
        self._max_speed_kmh = max_speed_kmh
        self._clock = clock

    def _shard(self, vehicle_id: str) -> _Shard:
        return self._shards[hash(vehicle_id) % len(self._shards)]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, vehicle_id: str) -> VehicleState | None:
        return self._shard(vehicle_id).records.get(vehicle_id)

    def vehicle_ids(self) -> list[str]:
        return [state.vehicle_id for state in self.list()]

    def list(self) -> list[VehicleState]:
        """Copy of every vehicle's current record, sorted by vehicle id.

        Each shard is copied under its lock, so the wait is bounded by one
        single-vehicle write. Each record is internally consistent; records
        from different shards may be from slightly different instants.
        """
        states: list[VehicleState] = []
        for shard in self._shards:
            with shard.lock:
                states.extend(shard.records.values())
        states.sort(key=lambda state: state.vehicle_id)
        return states

    def __contains__(self, vehicle_id: object) -> bool:
        return isinstance(vehicle_id, str) and self.get(vehicle_id) is not None

    def __len__(self) -> int:
        return sum(len(shard.records) for shard in self._shards)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, registration: VehicleRegistration) -> VehicleState:
        """Create a vehicle, or refresh its registry fields if it already exists.

        A refresh keeps position and history. Moving to another route resets
        progress along the route.
        """
        shard = self._shard(registration.vehicle_id)
        with shard.lock:
            current = shard.records.get(registration.vehicle_id)
            if current is None:
                state = VehicleState(
                    vehicle_id=registration.vehicle_id,
                    label=registration.label,
                    route_id=registration.route_id,
                    is_active=registration.is_active,
                    registered_at=self._clock(),
                )
                shard.records[registration.vehicle_id] = state
                logger.debug(f"Registered vehicle {registration.vehicle_id}")
                return state

            update: dict = {}
            if current.label != registration.label:
                update["label"] = registration.label
            if current.is_active != registration.is_active:
                update["is_active"] = registration.is_active
            if current.route_id != registration.route_id:
                update.update(
                    route_id=registration.route_id, distance_along_m=None, last_stop_id=None
                )
            if not update:
                return current
            update["version"] = current.version + 1
            state = current.model_copy(update=update)
            shard.records[registration.vehicle_id] = state
            return state

    def upsert(
        self, report: PositionReport, location: RouteLocation | None = None
    ) -> VehicleState:
        """Fold a position report into state.

        Args:
            report: Validated position report.
            location: Where the report lies on the vehicle's route, if known.

        Raises:
            UnknownVehicleError: If the vehicle is not registered.
            OutOfOrderReportError: If the report's ordering key is not newer
                than the stored one. State is left untouched.
        """
        return self.apply(report.vehicle_id, UpdatePosition(report, location))

    def apply(self, vehicle_id: str, command: VehicleCommand) -> VehicleState:
        """Apply a typed command to one vehicle under its shard lock.

        Returns:
            The new record, or the unchanged record when the command is a no-op.

        Raises:
            UnknownVehicleError: If the vehicle is not registered.
            OutOfOrderReportError: For an ``UpdatePosition`` that is not newer.
        """
        shard = self._shard(vehicle_id)
        with shard.lock:
            current = shard.records.get(vehicle_id)
            if current is None:
                raise UnknownVehicleError(
                    f"Vehicle {vehicle_id} is not registered", vehicle_id=vehicle_id
                )
            state = self._fold(current, command)
            if state is not current:
                shard.records[vehicle_id] = state
            return state

    def _fold(self, state: VehicleState, command: VehicleCommand) -> VehicleState:
        if isinstance(command, UpdatePosition):
            return self._fold_position(state, command)
        if isinstance(command, MarkStale):
            if (
                state.stale
                or not state.is_active
                or state.last_seen_at != command.expected_last_seen_at
            ):
                return state
            return self._write(state, stale=True)
        if isinstance(command, Deactivate):
            return self._write(state, is_active=False) if state.is_active else state
        if isinstance(command, Activate):
            return state if state.is_active else self._write(state, is_active=True)
        if isinstance(command, SetServiceStatus):
            if state.service_status == command.status:
                return state
            return self._write(state, service_status=command.status)
        if isinstance(command, AssignRoute):
            if state.route_id == command.route_id:
                return state
            return self._write(
                state, route_id=command.route_id, distance_along_m=None, last_stop_id=None
            )
        raise TypeError(f"Unsupported command: {command!r}")

    def _fold_position(self, state: VehicleState, command: UpdatePosition) -> VehicleState:
        report = command.report
        key = report.ordering_key
        if state.ordering_key is not None and key <= state.ordering_key:
            raise OutOfOrderReportError(
                f"Report key {key} is not newer than stored key {state.ordering_key}",
                vehicle_id=state.vehicle_id,
                stored_key=state.ordering_key,
                incoming_key=key,
            )

        moved_m: float | None = None
        if state.position is not None:
            moved_m = haversine_distance(
                state.position.lat, state.position.lng, report.lat, report.lng
            )

        speed = report.speed_kmh
        if speed is None and moved_m is not None and state.last_report_at is not None:
            elapsed = (report.timestamp - state.last_report_at).total_seconds()
            if elapsed > 0:
                speed = moved_m / elapsed * 3.6
                # A GPS jump, not movement; keep it out of the smoothed speed
                if speed > self._max_speed_kmh:
                    logger.debug(
                        f"{state.vehicle_id}: ignoring implied speed {speed:.0f} km/h "
                        f"over {moved_m:.0f} m in {elapsed:.0f}s"
                    )
                    speed = None

        smoothed = state.smoothed_speed_kmh
        if speed is not None:
            if smoothed is None:
                smoothed = speed
            else:
                smoothed = self._alpha * speed + (1 - self._alpha) * smoothed

        heading = report.heading_deg
        if heading is None:
            heading = state.heading_deg
            if state.position is not None and (moved_m or 0.0) >= MIN_HEADING_MOVE_M:
                heading = initial_bearing(
                    state.position.lat, state.position.lng, report.lat, report.lng
                )

        location = command.location
        on_route = location is not None and location.route_id == state.route_id

        return self._write(
            state,
            position=Coordinates(lat=report.lat, lng=report.lng),
            speed_kmh=speed,
            smoothed_speed_kmh=smoothed,
            heading_deg=heading,
            last_report_at=report.timestamp,
            ordering_key=key,
            distance_along_m=location.distance_along_m if on_route else None,
            last_stop_id=location.last_stop_id if on_route else None,
            last_seen_at=self._clock(),
            stale=False,
        )

    @staticmethod
    def _write(state: VehicleState, **changes) -> VehicleState:
        changes["version"] = state.version + 1
        return state.model_copy(update=changes)
