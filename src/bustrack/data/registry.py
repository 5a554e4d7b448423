"""Route/vehicle registry built from the SQLite reference database.

Each route's geometry is the stop sequence of one representative trip:
direction 0 first, then the trip with the most stops.
"""

import logging
from pathlib import Path

import aiosqlite

from bustrack.data.database import open_registry
from bustrack.exceptions import RegistryUnavailableError
from bustrack.models.registry import FleetRegistry
from bustrack.models.route import RouteGeometry, RouteStop
from bustrack.models.vehicle import VehicleRegistration
from bustrack.services.geo_index import haversine_distance

logger = logging.getLogger(__name__)

# shape_dist_traveled far below straight-line stop spacing means kilometres
KILOMETRE_UNITS_RATIO = 0.01


def gtfs_time_to_seconds(time_str: str) -> int:
    """Convert a GTFS time string to seconds since midnight.

    GTFS times can exceed 24:00:00 for trips that extend past midnight,
    e.g. "25:30:00" is 1:30 AM the next day.

    Args:
        time_str: Time string in HH:MM:SS format (hours can exceed 24).

    Returns:
        Total seconds since midnight (can exceed 86400 for next-day times).

    Raises:
        ValueError: If the time string is invalid.
    """
    parts = time_str.strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"Invalid GTFS time format: {time_str}")
    try:
        hours, minutes, seconds = (int(part) for part in parts)
    except ValueError as e:
        raise ValueError(f"Invalid GTFS time format: {time_str}") from e
    return hours * 3600 + minutes * 60 + seconds


def _parse_flag(value: object) -> bool:
    """Registry flags default to true when absent."""
    if value is None:
        return True
    return str(value).strip().lower() not in ("0", "false", "no")


async def load_registry(db_path: Path | None = None) -> FleetRegistry:
    """Load routes and vehicles from the registry database.

    Args:
        db_path: Optional path to the database. Defaults to the configured path.

    Returns:
        FleetRegistry with one RouteGeometry per route that has at least two
        located stops, and every vehicle in the roster.

    Raises:
        RegistryUnavailableError: If the database is missing, unreadable, or
            has no usable routes.
    """
    try:
        async with open_registry(db_path) as db:
            routes = await _load_routes(db)
            vehicles = await _load_vehicles(db)
    except aiosqlite.Error as e:
        raise RegistryUnavailableError(f"Registry database unreadable: {e}") from e

    if not routes:
        raise RegistryUnavailableError("Registry has no routes with at least two located stops")

    logger.info(f"Registry loaded: {len(routes)} routes, {len(vehicles)} vehicles")
    return FleetRegistry(routes=routes, vehicles=vehicles)


async def _load_routes(db: aiosqlite.Connection) -> dict[str, RouteGeometry]:
    route_rows: dict[str, aiosqlite.Row] = {}
    async with db.execute(
        "SELECT route_id, route_short_name, route_long_name, is_active FROM routes"
    ) as cursor:
        async for row in cursor:
            route_rows[row["route_id"]] = row

    representative = await _representative_trips(db)

    routes: dict[str, RouteGeometry] = {}
    for route_id, row in route_rows.items():
        trip_id = representative.get(route_id)
        if trip_id is None:
            logger.warning(f"Route {route_id} has no trips with stop times, skipping")
            continue
        stops = await _load_trip_stops(db, trip_id)
        if len(stops) < 2:
            logger.warning(f"Route {route_id} has fewer than two located stops, skipping")
            continue
        routes[route_id] = RouteGeometry(
            route_id=route_id,
            short_name=row["route_short_name"],
            long_name=row["route_long_name"],
            stops=tuple(stops),
            is_active=_parse_flag(row["is_active"]),
            average_speed_kmh=_scheduled_average_speed(stops),
        )
    return routes


async def _representative_trips(db: aiosqlite.Connection) -> dict[str, str]:
    """Pick one trip per route: direction 0 first, then the most stop times."""
    query = """
        SELECT t.route_id, t.trip_id, COUNT(*) AS stop_count
        FROM trips t
        JOIN stop_times st ON st.trip_id = t.trip_id
        GROUP BY t.trip_id
        ORDER BY t.route_id, COALESCE(t.direction_id, 0), stop_count DESC, t.trip_id
    """
    chosen: dict[str, str] = {}
    async with db.execute(query) as cursor:
        async for row in cursor:
            chosen.setdefault(row["route_id"], row["trip_id"])
    return chosen


async def _load_trip_stops(db: aiosqlite.Connection, trip_id: str) -> list[RouteStop]:
    query = """
        SELECT st.stop_id, st.stop_sequence, st.arrival_time, st.departure_time,
               st.shape_dist_traveled, s.stop_name, s.stop_lat, s.stop_lon
        FROM stop_times st
        JOIN stops s ON s.stop_id = st.stop_id
        WHERE st.trip_id = ?
        ORDER BY st.stop_sequence
    """
    async with db.execute(query, (trip_id,)) as cursor:
        rows = [
            row
            async for row in cursor
            if row["stop_lat"] is not None and row["stop_lon"] is not None
        ]

    first_time: int | None = None
    stops: list[RouteStop] = []
    for index, row in enumerate(rows):
        offset = None
        time_str = row["arrival_time"] or row["departure_time"]
        if time_str:
            try:
                seconds = gtfs_time_to_seconds(time_str)
            except ValueError:
                logger.debug(f"Trip {trip_id}: bad stop time {time_str!r}")
            else:
                if first_time is None:
                    first_time = seconds
                offset = seconds - first_time
        stops.append(
            RouteStop(
                stop_id=row["stop_id"],
                name=row["stop_name"],
                lat=float(row["stop_lat"]),
                lng=float(row["stop_lon"]),
                sequence=index + 1,
                scheduled_offset_s=offset,
            )
        )

    distances = _shape_distances([row["shape_dist_traveled"] for row in rows], stops)
    if distances is not None:
        stops = [
            stop.model_copy(update={"distance_along_m": distance})
            for stop, distance in zip(stops, distances)
        ]
    return _drop_coincident_stops(trip_id, stops)


def _drop_coincident_stops(trip_id: str, stops: list[RouteStop]) -> list[RouteStop]:
    """Keep only the first of consecutive stops that do not advance along the route.

    Distance-along-route must strictly increase from stop to stop; a stop
    listed twice in a row, or sharing a shape distance with its predecessor,
    adds no geometry.
    """
    kept: list[RouteStop] = []
    for stop in stops:
        if kept:
            prev = kept[-1]
            if prev.distance_along_m is not None and stop.distance_along_m is not None:
                coincident = stop.distance_along_m <= prev.distance_along_m
            else:
                coincident = (stop.lat, stop.lng) == (prev.lat, prev.lng)
            if coincident:
                logger.debug(f"Trip {trip_id}: stop {stop.stop_id} coincides with {prev.stop_id}")
                continue
        kept.append(stop.model_copy(update={"sequence": len(kept) + 1}))
    return kept


def _shape_distances(values: list[object], stops: list[RouteStop]) -> list[float] | None:
    """Distances from shape_dist_traveled, in metres, when every stop has a usable one."""
    if len(values) < 2 or any(value is None for value in values):
        return None
    try:
        raw = [float(value) for value in values]  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if any(b < a for a, b in zip(raw, raw[1:])):
        return None

    base = raw[0]
    distances = [value - base for value in raw]
    straight_line = sum(
        haversine_distance(a.lat, a.lng, b.lat, b.lng) for a, b in zip(stops, stops[1:])
    )
    if distances[-1] <= 0:
        return None
    if straight_line > 0 and distances[-1] < straight_line * KILOMETRE_UNITS_RATIO:
        distances = [d * 1000 for d in distances]
    return distances


def _scheduled_average_speed(stops: list[RouteStop]) -> float | None:
    """Route average speed from the representative trip's schedule, if it has one."""
    last = stops[-1]
    if not last.scheduled_offset_s or last.scheduled_offset_s <= 0:
        return None
    if last.distance_along_m is not None:
        length_m = last.distance_along_m - (stops[0].distance_along_m or 0.0)
    else:
        length_m = sum(
            haversine_distance(a.lat, a.lng, b.lat, b.lng) for a, b in zip(stops, stops[1:])
        )
    if length_m <= 0:
        return None
    return length_m / last.scheduled_offset_s * 3.6


async def _load_vehicles(db: aiosqlite.Connection) -> list[VehicleRegistration]:
    vehicles: list[VehicleRegistration] = []
    async with db.execute(
        "SELECT vehicle_id, vehicle_label, route_id, is_active FROM vehicles ORDER BY vehicle_id"
    ) as cursor:
        async for row in cursor:
            vehicles.append(
                VehicleRegistration(
                    vehicle_id=row["vehicle_id"],
                    label=row["vehicle_label"],
                    route_id=row["route_id"],
                    is_active=_parse_flag(row["is_active"]),
                )
            )
    return vehicles
