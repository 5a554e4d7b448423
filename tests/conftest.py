"""Shared fixtures: a three-stop route running due north and a controllable clock."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from bustrack.data.config import FleetConfig
from bustrack.models.registry import FleetRegistry
from bustrack.models.route import RouteGeometry, RouteStop
from bustrack.models.vehicle import VehicleRegistration
from bustrack.services import fleet_service
from bustrack.services.engine import FleetEngine

# Route R runs due north along one meridian: A@0m, B@1000m, C@3000m
ORIGIN_LAT = 45.5
ORIGIN_LNG = -73.6
DEG_PER_METER = 1 / 111_195.0

T0 = datetime(2024, 5, 1, 8, 0, 0, tzinfo=UTC)


def lat_at(meters: float) -> float:
    """Latitude of the point ``meters`` north of the route origin."""
    return ORIGIN_LAT + meters * DEG_PER_METER


def make_route(
    route_id: str = "R",
    *,
    short_name: str | None = "24",
    long_name: str | None = "Campus Loop",
    is_active: bool = True,
    average_speed_kmh: float | None = None,
    scheduled: bool = False,
) -> RouteGeometry:
    offsets = (0, 180, 540) if scheduled else (None, None, None)
    stops = tuple(
        RouteStop(
            stop_id=stop_id,
            name=f"Stop {stop_id}",
            lat=lat_at(distance),
            lng=ORIGIN_LNG,
            sequence=index + 1,
            distance_along_m=distance,
            scheduled_offset_s=offset,
        )
        for index, (stop_id, distance, offset) in enumerate(
            zip(("A", "B", "C"), (0.0, 1000.0, 3000.0), offsets)
        )
    )
    return RouteGeometry(
        route_id=route_id,
        short_name=short_name,
        long_name=long_name,
        stops=stops,
        is_active=is_active,
        average_speed_kmh=average_speed_kmh,
    )


class FakeClock:
    """Wall clock the test moves by hand."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def route() -> RouteGeometry:
    return make_route()


@pytest.fixture
def registry(route: RouteGeometry) -> FleetRegistry:
    return FleetRegistry(
        routes={route.route_id: route},
        vehicles=[
            VehicleRegistration(vehicle_id="V1", label="1001", route_id="R"),
            VehicleRegistration(vehicle_id="V2", label="1002", route_id="R"),
            VehicleRegistration(vehicle_id="V3", label="1003", route_id=None),
        ],
    )


@pytest.fixture
def config() -> FleetConfig:
    return FleetConfig(
        _env_file=None,
        staleness_threshold_seconds=60,
        publish_interval_seconds=3,
        lock_shards=8,
    )


@pytest.fixture
def engine(registry: FleetRegistry, config: FleetConfig, clock: FakeClock) -> FleetEngine:
    return FleetEngine(registry, config, clock=clock)


@pytest.fixture
def installed_engine(engine: FleetEngine):
    """Engine installed as the fleet_service singleton."""
    fleet_service.reset_service()
    fleet_service.set_engine(engine)
    yield engine
    fleet_service.reset_service()


def report(
    vehicle_id: str = "V1",
    meters: float = 500.0,
    at: datetime = T0,
    *,
    speed_kmh: float | None = 20.0,
    sequence_number: int | None = None,
    lng: float = ORIGIN_LNG,
) -> dict:
    """Raw position report ``meters`` along route R."""
    raw = {
        "vehicle_id": vehicle_id,
        "lat": lat_at(meters),
        "lng": lng,
        "timestamp": at.isoformat(),
        "speed_kmh": speed_kmh,
    }
    if sequence_number is not None:
        raw["sequence_number"] = sequence_number
    return raw


@pytest.fixture
def sample_gtfs_dir(tmp_path: Path) -> Path:
    """GTFS directory with two routes and a vehicle roster."""
    gtfs_dir = tmp_path / "gtfs"
    gtfs_dir.mkdir()

    (gtfs_dir / "agency.txt").write_text(
        "agency_id,agency_name,agency_url,agency_timezone\n"
        "CT,City Transit,http://transit.example,America/Toronto\n"
    )
    (gtfs_dir / "routes.txt").write_text(
        "route_id,agency_id,route_short_name,route_long_name,route_type\n"
        "R24,CT,24,Campus Loop,3\n"
        "R80,CT,80,Downtown Express,3\n"
    )
    (gtfs_dir / "stops.txt").write_text(
        "stop_id,stop_code,stop_name,stop_lat,stop_lon\n"
        f"A,100,Main Gate,{lat_at(0)},{ORIGIN_LNG}\n"
        f"B,101,Library,{lat_at(1000)},{ORIGIN_LNG}\n"
        f"C,102,Stadium,{lat_at(3000)},{ORIGIN_LNG}\n"
        "X,199,Depot,,\n"
    )
    (gtfs_dir / "trips.txt").write_text(
        "trip_id,route_id,service_id,trip_headsign,direction_id,shape_id\n"
        "T24_SHORT,R24,WK,Library,0,\n"
        "T24_FULL,R24,WK,Stadium,0,\n"
        "T24_BACK,R24,WK,Main Gate,1,\n"
        "T80,R80,WK,Downtown,0,\n"
    )
    (gtfs_dir / "stop_times.txt").write_text(
        "trip_id,arrival_time,departure_time,stop_id,stop_sequence,shape_dist_traveled\n"
        "T24_SHORT,08:00:00,08:00:00,A,1,\n"
        "T24_SHORT,08:03:00,08:03:00,B,2,\n"
        "T24_FULL,08:00:00,08:00:00,A,1,0\n"
        "T24_FULL,08:03:00,08:03:00,B,2,1000\n"
        "T24_FULL,08:09:00,08:09:00,C,3,3000\n"
        "T24_FULL,08:10:00,08:10:00,X,4,3100\n"
        "T24_BACK,09:00:00,09:00:00,C,1,\n"
        "T24_BACK,09:06:00,09:06:00,B,2,\n"
        "T24_BACK,09:09:00,09:09:00,A,3,\n"
        "T80,10:00:00,10:00:00,C,1,\n"
        "T80,10:05:00,10:05:00,A,2,\n"
    )
    (gtfs_dir / "vehicles.txt").write_text(
        "vehicle_id,vehicle_label,route_id,is_active\n"
        "V1,1001,R24,1\n"
        "V2,1002,R80,\n"
        "V9,1009,R24,0\n"
    )
    return gtfs_dir


def simulated_feed(
    vehicle_ids: list[str],
    steps: int,
    *,
    speed_kmh: float = 20.0,
    interval_s: int = 10,
) -> list[dict]:
    """Deterministic reports for vehicles driving route R, ending at T0.

    Each vehicle starts a little further along than the previous one and
    reports every ``interval_s`` seconds with an increasing sequence number.
    """
    step_m = speed_kmh / 3.6 * interval_s
    start = T0 - timedelta(seconds=interval_s * (steps - 1))
    reports = []
    for offset, vehicle_id in enumerate(vehicle_ids):
        for step in range(steps):
            reports.append(
                report(
                    vehicle_id,
                    min(3000.0, offset * 100.0 + step * step_m),
                    start + timedelta(seconds=interval_s * step),
                    speed_kmh=speed_kmh,
                    sequence_number=step + 1,
                )
            )
    return reports
