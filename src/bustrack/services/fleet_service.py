"""Outbound query interface over the fleet engine.

Provides the read-only queries dashboard/API collaborators use, plus the
inbound ``report_position`` entry point. Unknown ids produce ``found=False``
or unavailable results, never errors.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from bustrack import __version__
from bustrack.data.config import FleetConfig, get_fleet_config
from bustrack.exceptions import RegistryUnavailableError
from bustrack.matching.models import RouteResolutionResponse
from bustrack.matching.route_matcher import resolve_route as _resolve_route
from bustrack.models.eta import ETAResult
from bustrack.models.responses import (
    GetFleetSnapshotResponse,
    GetVehicleResponse,
    HealthResponse,
    IngestResult,
    IngestStats,
)
from bustrack.models.route import (
    GetRouteStopsResponse,
    ListRoutesResponse,
    RouteGeometry,
    RouteSummary,
)
from bustrack.models.snapshot import FleetSnapshot
from bustrack.services.engine import FleetEngine

logger = logging.getLogger(__name__)

# Module-level singleton (lazy-initialized)
_engine: FleetEngine | None = None
_engine_lock: asyncio.Lock | None = None
_config: FleetConfig | None = None


def _get_config() -> FleetConfig:
    """Get or create the config singleton."""
    global _config
    if _config is None:
        _config = get_fleet_config()
    return _config


def _get_lock() -> asyncio.Lock:
    global _engine_lock
    if _engine_lock is None:
        _engine_lock = asyncio.Lock()
    return _engine_lock


async def get_engine() -> FleetEngine:
    """Get or create the engine singleton from the registry database.

    Raises:
        RegistryUnavailableError: If the registry cannot be loaded.
    """
    global _engine
    if _engine is not None:
        return _engine
    async with _get_lock():
        if _engine is None:
            _engine = await FleetEngine.from_database(_get_config())
        return _engine


def set_engine(engine: FleetEngine | None) -> None:
    """Install an engine (embedding, tests) or clear the current one."""
    global _engine
    _engine = engine


def reset_service() -> None:
    """Reset service state (for testing)."""
    global _engine, _engine_lock, _config
    _engine = None
    _engine_lock = None
    _config = None


def _route_summary(engine: FleetEngine, route: RouteGeometry) -> RouteSummary:
    active_vehicles = sum(
        1
        for state in engine.store.list()
        if state.route_id == route.route_id and state.is_active and not state.stale
    )
    return RouteSummary(
        route_id=route.route_id,
        short_name=route.short_name,
        long_name=route.long_name,
        is_active=route.is_active,
        stop_count=len(route.stops),
        length_m=round(route.total_length_m, 1),
        active_vehicles=active_vehicles,
    )


async def get_fleet_snapshot(route_id: str | None = None) -> GetFleetSnapshotResponse:
    """Current fleet snapshot, optionally limited to one route.

    Args:
        route_id: Only include vehicles assigned to this route.
    """
    engine = await get_engine()
    snapshot = await engine.broadcaster.get_snapshot()
    if route_id is not None:
        snapshot = FleetSnapshot(
            timestamp=snapshot.timestamp,
            sequence=snapshot.sequence,
            entries=[e for e in snapshot.entries if e.vehicle.route_id == route_id],
        )
    return GetFleetSnapshotResponse(
        snapshot=snapshot, count=len(snapshot.entries), route_id=route_id
    )


async def get_vehicle(vehicle_id: str) -> GetVehicleResponse:
    """Current state of one vehicle, with ETAs projected from that state."""
    engine = await get_engine()
    state = engine.store.get(vehicle_id.strip())
    if state is None:
        return GetVehicleResponse(found=False)
    return GetVehicleResponse(
        found=True, vehicle=state, eta=engine.eta_engine.project_state(state)
    )


async def get_eta(vehicle_id: str) -> ETAResult:
    engine = await get_engine()
    return engine.eta_engine.project(vehicle_id.strip())


async def list_routes(include_inactive: bool = False) -> ListRoutesResponse:
    engine = await get_engine()
    routes = [
        _route_summary(engine, route)
        for route in engine.geo_index.routes()
        if include_inactive or route.is_active
    ]
    return ListRoutesResponse(routes=routes, count=len(routes))


async def get_route_stops(route_id: str) -> GetRouteStopsResponse:
    """Ordered stops of a route with their distance-along-route."""
    engine = await get_engine()
    route = engine.geo_index.get(route_id.strip())
    if route is None:
        return GetRouteStopsResponse(found=False)
    return GetRouteStopsResponse(
        found=True, route=_route_summary(engine, route), stops=list(route.stops)
    )


async def resolve_route(
    query: str, limit: int = 5, min_score: float = 60.0
) -> RouteResolutionResponse:
    engine = await get_engine()
    return _resolve_route(query, engine.geo_index.routes(), limit=limit, min_score=min_score)


async def report_position(
    vehicle_id: str,
    lat: float,
    lng: float,
    timestamp: datetime,
    speed_kmh: float | None = None,
    heading_deg: float | None = None,
    sequence_number: int | None = None,
) -> IngestResult:
    """Feed one position report into the ingest pipeline."""
    engine = await get_engine()
    raw: dict[str, Any] = {
        "vehicle_id": vehicle_id,
        "lat": lat,
        "lng": lng,
        "timestamp": timestamp,
        "speed_kmh": speed_kmh,
        "heading_deg": heading_deg,
        "sequence_number": sequence_number,
    }
    return engine.pipeline.ingest(raw)


async def health() -> HealthResponse:
    """Engine health; ``unavailable`` instead of an error when the registry is missing."""
    try:
        engine = await get_engine()
    except RegistryUnavailableError as e:
        logger.warning(f"Health check: registry unavailable: {e}")
        return HealthResponse(
            status="unavailable",
            version=__version__,
            running=False,
            vehicles=0,
            routes=0,
            stale_vehicles=0,
            subscribers=0,
            ingest=IngestStats(),
        )

    states = engine.store.list()
    latest = engine.broadcaster.latest
    return HealthResponse(
        status="ok" if engine.running else "degraded",
        version=__version__,
        running=engine.running,
        vehicles=len(states),
        routes=len(engine.geo_index),
        stale_vehicles=sum(1 for state in states if state.stale),
        subscribers=engine.broadcaster.subscriber_count,
        ingest=engine.pipeline.stats(),
        last_snapshot_at=latest.timestamp if latest else None,
    )
