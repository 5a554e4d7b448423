"""Arrival projection against route geometry.

Vehicle progress is the distance-along-route of the nearest point on the
route's stop polyline; remaining distance to a stop is the difference in
distance-along-route. Travel time uses the vehicle's smoothed speed, falling
back to scheduled or average segment speeds while it is stopped.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from bustrack.exceptions import ProjectionUnavailableError, RouteUnavailableError
from bustrack.models.eta import ETAProjection, ETAResult, ProjectionConfidence, UnavailableReason
from bustrack.models.route import RouteGeometry, RouteLocation, RouteStop
from bustrack.models.vehicle import VehicleState
from bustrack.services.geo_index import AT_STOP_TOLERANCE_M, GeoIndex, haversine_distance
from bustrack.services.state_store import VehicleStateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ETAEngine:
    """Projects arrival times at every downstream stop of a vehicle's route."""

    def __init__(
        self,
        store: VehicleStateStore,
        geo_index: GeoIndex,
        *,
        min_moving_speed_kmh: float = 1.0,
        default_route_speed_kmh: float = 20.0,
        off_route_threshold_m: float = 150.0,
        staleness_threshold_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._geo = geo_index
        self._min_moving_speed_kmh = min_moving_speed_kmh
        self._default_speed_kmh = default_route_speed_kmh
        self._off_route_threshold_m = off_route_threshold_m
        self._staleness_threshold = (
            timedelta(seconds=staleness_threshold_seconds)
            if staleness_threshold_seconds is not None
            else None
        )
        self._clock = clock

    def project(self, vehicle_id: str) -> ETAResult:
        """Project arrivals for a vehicle's current state."""
        now = self._clock()
        state = self._store.get(vehicle_id)
        if state is None:
            return ETAResult.unavailable(vehicle_id, UnavailableReason.UNKNOWN_VEHICLE, now)
        return self.project_state(state, now)

    def project_state(self, state: VehicleState, now: datetime | None = None) -> ETAResult:
        """Project arrivals for a given state record.

        Snapshots call this with the exact record they publish, so an entry's
        ETAs always derive from the position shown beside them.

        Args:
            state: Vehicle state record.
            now: Projection instant; defaults to the engine clock.

        Returns:
            ETAResult with one projection per downstream stop, or unavailable.
        """
        now = now or self._clock()
        try:
            route = self._check_projectable(state, now)
        except ProjectionUnavailableError as e:
            return ETAResult.unavailable(state.vehicle_id, e.reason, now, route_id=state.route_id)

        location = self._geo.locate(
            route.route_id,
            state.position.lat,  # type: ignore[union-attr]
            state.position.lng,  # type: ignore[union-attr]
            hint_m=state.distance_along_m,
        )
        if location is None:
            return ETAResult.unavailable(
                state.vehicle_id, UnavailableReason.ROUTE_UNAVAILABLE, now, route_id=route.route_id
            )

        if location.offset_m > self._off_route_threshold_m:
            projections = self._project_off_route(state, route, location, now)
        elif location.beyond_end_m > AT_STOP_TOLERANCE_M:
            projections = []
        else:
            projections = self._project_on_route(state, route, location, now)

        return ETAResult(
            vehicle_id=state.vehicle_id,
            available=True,
            route_id=route.route_id,
            projections=projections,
            computed_at=now,
        )

    def _check_projectable(self, state: VehicleState, now: datetime) -> RouteGeometry:
        if not state.is_active:
            raise ProjectionUnavailableError(UnavailableReason.INACTIVE)
        if state.stale or self._is_overdue(state, now):
            raise ProjectionUnavailableError(UnavailableReason.STALE)
        if state.route_id is None:
            raise RouteUnavailableError(UnavailableReason.NO_ROUTE)
        route = self._geo.get(state.route_id)
        if route is None or not route.is_active:
            raise RouteUnavailableError(
                UnavailableReason.ROUTE_UNAVAILABLE, f"Route {state.route_id} is not active"
            )
        if state.position is None:
            raise ProjectionUnavailableError(UnavailableReason.NO_POSITION)
        return route

    def _is_overdue(self, state: VehicleState, now: datetime) -> bool:
        """Silent past the threshold, whether or not a sweep has flagged it yet."""
        if self._staleness_threshold is None:
            return False
        baseline = state.last_seen_at or state.registered_at
        return baseline is not None and now - baseline > self._staleness_threshold

    def _is_moving(self, state: VehicleState) -> bool:
        speed = state.smoothed_speed_kmh
        return speed is not None and speed > 0 and speed >= self._min_moving_speed_kmh

    def _project_on_route(
        self,
        state: VehicleState,
        route: RouteGeometry,
        location: RouteLocation,
        now: datetime,
    ) -> list[ETAProjection]:
        s = location.distance_along_m
        moving = self._is_moving(state)
        confidence = ProjectionConfidence.HIGH if moving else ProjectionConfidence.MEDIUM

        projections: list[ETAProjection] = []
        for stop in _downstream(route, s):
            remaining = max(0.0, _distance(stop) - s)
            if moving:
                seconds = _seconds_at(remaining, state.smoothed_speed_kmh)  # type: ignore[arg-type]
            else:
                seconds = self._fallback_seconds(route, s, s + remaining)
            projections.append(
                self._projection(state, route, stop, remaining, seconds, s, confidence, now)
            )
        return projections

    def _project_off_route(
        self,
        state: VehicleState,
        route: RouteGeometry,
        location: RouteLocation,
        now: datetime,
    ) -> list[ETAProjection]:
        """Straight-line distance to the next stop, route distance beyond it."""
        downstream = _downstream(route, location.distance_along_m)
        if not downstream:
            return []

        position = state.position
        next_stop = downstream[0]
        to_next = haversine_distance(
            position.lat, position.lng, next_stop.lat, next_stop.lng  # type: ignore[union-attr]
        )
        if self._is_moving(state):
            speed_kmh = state.smoothed_speed_kmh
        else:
            speed_kmh = route.average_speed_kmh or self._default_speed_kmh

        projections: list[ETAProjection] = []
        for stop in downstream:
            remaining = to_next + (_distance(stop) - _distance(next_stop))
            seconds = _seconds_at(remaining, speed_kmh)  # type: ignore[arg-type]
            projections.append(
                self._projection(
                    state,
                    route,
                    stop,
                    remaining,
                    seconds,
                    location.distance_along_m,
                    ProjectionConfidence.LOW,
                    now,
                )
            )
        return projections

    def _fallback_seconds(self, route: RouteGeometry, from_m: float, to_m: float) -> float:
        """Travel time between two route distances at per-segment fallback speeds."""
        seconds = 0.0
        for start, end in zip(route.stops, route.stops[1:]):
            overlap = min(to_m, _distance(end)) - max(from_m, _distance(start))
            if overlap <= 0:
                continue
            seconds += _seconds_at(overlap, self._segment_speed_kmh(route, start, end))
        return seconds

    def _segment_speed_kmh(self, route: RouteGeometry, start: RouteStop, end: RouteStop) -> float:
        """Scheduled speed for the segment, else the route's average, else the default."""
        if start.scheduled_offset_s is not None and end.scheduled_offset_s is not None:
            scheduled_s = end.scheduled_offset_s - start.scheduled_offset_s
            length_m = _distance(end) - _distance(start)
            if scheduled_s > 0 and length_m > 0:
                return length_m / scheduled_s * 3.6
        return route.average_speed_kmh or self._default_speed_kmh

    def _projection(
        self,
        state: VehicleState,
        route: RouteGeometry,
        stop: RouteStop,
        remaining_m: float,
        seconds: float,
        s: float,
        confidence: ProjectionConfidence,
        now: datetime,
    ) -> ETAProjection:
        total = route.total_length_m
        progress = min(1.0, max(0.0, s / total)) if total > 0 else 0.0
        return ETAProjection(
            vehicle_id=state.vehicle_id,
            stop_id=stop.stop_id,
            stop_name=stop.name,
            stop_sequence=stop.sequence,
            distance_remaining_m=round(remaining_m, 1),
            minutes_remaining=round(seconds / 60, 1),
            arrival_at=now + timedelta(seconds=seconds),
            progress=round(progress, 4),
            confidence=confidence,
        )


def _distance(stop: RouteStop) -> float:
    return stop.distance_along_m or 0.0


def _downstream(route: RouteGeometry, s: float) -> list[RouteStop]:
    """Stops at or ahead of distance ``s`` (a stop within tolerance counts as ahead).

    Of several stops within tolerance behind ``s`` only the last is kept, so
    no two downstream stops share a remaining distance.
    """
    ahead = [stop for stop in route.stops if _distance(stop) >= s - AT_STOP_TOLERANCE_M]
    while len(ahead) > 1 and _distance(ahead[1]) <= s:
        ahead.pop(0)
    return ahead


def _seconds_at(distance_m: float, speed_kmh: float) -> float:
    return distance_m / (speed_kmh / 3.6)
