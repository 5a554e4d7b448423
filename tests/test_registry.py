"""Tests for building the fleet registry from the reference database."""

from pathlib import Path

import aiosqlite
import pytest

from bustrack.data.gtfs_loader import GTFSLoader
from bustrack.data.registry import gtfs_time_to_seconds, load_registry
from bustrack.exceptions import RegistryUnavailableError


@pytest.fixture
async def db_path(sample_gtfs_dir: Path, tmp_path: Path) -> Path:
    db_path = tmp_path / "registry.db"
    await GTFSLoader(db_path).ingest(sample_gtfs_dir)
    return db_path


class TestGtfsTimeToSeconds:
    def test_regular_time(self):
        assert gtfs_time_to_seconds("08:03:00") == 8 * 3600 + 180

    def test_past_midnight(self):
        assert gtfs_time_to_seconds("25:30:00") == 25 * 3600 + 1800

    @pytest.mark.parametrize("value", ["8:00", "aa:bb:cc", ""])
    def test_invalid(self, value: str):
        with pytest.raises(ValueError):
            gtfs_time_to_seconds(value)


class TestLoadRegistry:
    async def test_loads_routes_and_vehicles(self, db_path: Path):
        registry = await load_registry(db_path)

        assert registry.route_ids == ["R24", "R80"]
        assert [v.vehicle_id for v in registry.vehicles] == ["V1", "V2", "V9"]

    async def test_representative_trip_is_longest_direction_zero(self, db_path: Path):
        registry = await load_registry(db_path)
        route = registry.routes["R24"]

        # Depot stop has no coordinates and is dropped
        assert [stop.stop_id for stop in route.stops] == ["A", "B", "C"]
        assert [stop.sequence for stop in route.stops] == [1, 2, 3]
        assert route.short_name == "24"
        assert route.long_name == "Campus Loop"

    async def test_shape_distances_and_schedule(self, db_path: Path):
        route = (await load_registry(db_path)).routes["R24"]

        assert [stop.distance_along_m for stop in route.stops] == [0.0, 1000.0, 3000.0]
        assert [stop.scheduled_offset_s for stop in route.stops] == [0, 180, 540]
        # 3000 m in 9 minutes
        assert route.average_speed_kmh == pytest.approx(20.0)

    async def test_route_without_shape_distances(self, db_path: Path):
        route = (await load_registry(db_path)).routes["R80"]
        assert [stop.stop_id for stop in route.stops] == ["C", "A"]
        assert all(stop.distance_along_m is None for stop in route.stops)
        assert route.average_speed_kmh == pytest.approx(3000 / 300 * 3.6, rel=1e-3)

    async def test_vehicle_flags(self, db_path: Path):
        vehicles = {v.vehicle_id: v for v in (await load_registry(db_path)).vehicles}

        assert vehicles["V1"].route_id == "R24"
        assert vehicles["V1"].label == "1001"
        assert vehicles["V2"].is_active is True
        assert vehicles["V9"].is_active is False

    async def test_kilometre_shape_distances_converted(
        self, sample_gtfs_dir: Path, tmp_path: Path
    ):
        stop_times = (sample_gtfs_dir / "stop_times.txt").read_text()
        stop_times = (
            stop_times.replace("B,2,1000", "B,2,1.0")
            .replace("C,3,3000", "C,3,3.0")
            .replace("X,4,3100", "X,4,3.1")
        )
        (sample_gtfs_dir / "stop_times.txt").write_text(stop_times)
        db_path = tmp_path / "km.db"
        await GTFSLoader(db_path).ingest(sample_gtfs_dir)

        route = (await load_registry(db_path)).routes["R24"]

        assert [stop.distance_along_m for stop in route.stops] == [0.0, 1000.0, 3000.0]

    async def test_repeated_stop_collapsed(self, sample_gtfs_dir: Path, tmp_path: Path):
        stop_times = (sample_gtfs_dir / "stop_times.txt").read_text()
        stop_times = stop_times.replace(
            "T80,10:05:00,10:05:00,A,2,\n",
            "T80,10:01:00,10:01:00,C,2,\nT80,10:05:00,10:05:00,A,3,\n",
        )
        (sample_gtfs_dir / "stop_times.txt").write_text(stop_times)
        db_path = tmp_path / "repeated.db"
        await GTFSLoader(db_path).ingest(sample_gtfs_dir)

        route = (await load_registry(db_path)).routes["R80"]

        assert [stop.stop_id for stop in route.stops] == ["C", "A"]
        assert [stop.sequence for stop in route.stops] == [1, 2]

    async def test_missing_database(self, tmp_path: Path):
        with pytest.raises(RegistryUnavailableError, match="bustrack ingest"):
            await load_registry(tmp_path / "missing.db")

    async def test_database_without_registry_tables(self, tmp_path: Path):
        db_path = tmp_path / "other.db"
        async with aiosqlite.connect(db_path) as db:
            await db.execute("CREATE TABLE routes (route_id TEXT)")
            await db.commit()

        with pytest.raises(RegistryUnavailableError, match="missing tables: stops"):
            await load_registry(db_path)

    async def test_unreadable_database(self, tmp_path: Path):
        db_path = tmp_path / "garbage.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)

        with pytest.raises(RegistryUnavailableError):
            await load_registry(db_path)
