"""GTFS loader for building the route/vehicle registry database."""

import csv
import io
import logging
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TextIO

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- routes (is_active is a bustrack extension, defaults to active)
CREATE TABLE routes (
    route_id TEXT PRIMARY KEY,
    route_short_name TEXT,
    route_long_name TEXT,
    route_type INTEGER NOT NULL,
    is_active INTEGER
);

-- stops
CREATE TABLE stops (
    stop_id TEXT PRIMARY KEY,
    stop_code TEXT,
    stop_name TEXT NOT NULL,
    stop_lat REAL,
    stop_lon REAL
);

-- trips
CREATE TABLE trips (
    trip_id TEXT PRIMARY KEY,
    route_id TEXT NOT NULL,
    service_id TEXT NOT NULL,
    trip_headsign TEXT,
    direction_id INTEGER,
    shape_id TEXT
);

-- stop_times
CREATE TABLE stop_times (
    trip_id TEXT NOT NULL,
    arrival_time TEXT,
    departure_time TEXT,
    stop_id TEXT NOT NULL,
    stop_sequence INTEGER NOT NULL,
    shape_dist_traveled REAL,
    PRIMARY KEY (trip_id, stop_sequence)
);

-- vehicles (fleet roster, not part of GTFS)
CREATE TABLE vehicles (
    vehicle_id TEXT PRIMARY KEY,
    vehicle_label TEXT,
    route_id TEXT,
    is_active INTEGER
);
"""

INDEX_SQL = """
CREATE INDEX idx_trips_route ON trips(route_id);
CREATE INDEX idx_stop_times_trip ON stop_times(trip_id);
CREATE INDEX idx_vehicles_route ON vehicles(route_id);
"""

# Table definitions: table_name -> (csv_filename, columns)
TABLE_DEFINITIONS: dict[str, tuple[str, list[str]]] = {
    "routes": (
        "routes.txt",
        ["route_id", "route_short_name", "route_long_name", "route_type", "is_active"],
    ),
    "stops": (
        "stops.txt",
        ["stop_id", "stop_code", "stop_name", "stop_lat", "stop_lon"],
    ),
    "trips": (
        "trips.txt",
        ["trip_id", "route_id", "service_id", "trip_headsign", "direction_id", "shape_id"],
    ),
    "stop_times": (
        "stop_times.txt",
        [
            "trip_id",
            "arrival_time",
            "departure_time",
            "stop_id",
            "stop_sequence",
            "shape_dist_traveled",
        ],
    ),
    "vehicles": (
        "vehicles.txt",
        ["vehicle_id", "vehicle_label", "route_id", "is_active"],
    ),
}

# Files that must exist; the rest are loaded when present.
REQUIRED_FILES = {"routes", "stops", "trips", "stop_times"}

# Columns that must be present for a row to be inserted.
REQUIRED_COLUMNS: dict[str, list[str]] = {
    "routes": ["route_id", "route_type"],
    "stops": ["stop_id", "stop_name"],
    "trips": ["trip_id", "route_id", "service_id"],
    "stop_times": ["trip_id", "stop_id", "stop_sequence"],
    "vehicles": ["vehicle_id"],
}

# Columns that may be absent from the CSV header entirely.
OPTIONAL_COLUMNS: dict[str, set[str]] = {
    "routes": {"route_short_name", "route_long_name", "is_active"},
    "stops": {"stop_code", "stop_lat", "stop_lon"},
    "trips": {"trip_headsign", "direction_id", "shape_id"},
    "stop_times": {"arrival_time", "departure_time", "shape_dist_traveled"},
    "vehicles": {"vehicle_label", "route_id", "is_active"},
}

# Chunk size for bulk inserts
CHUNK_SIZE = 10000


class GTFSLoader:
    """Loader for ingesting GTFS routes/stops and the vehicle roster into SQLite."""

    def __init__(self, db_path: Path):
        """Initialize the loader.

        Args:
            db_path: Path where the SQLite database will be created.
        """
        self.db_path = Path(db_path)

    async def ingest(self, gtfs_path: Path) -> dict[str, int]:
        """Ingest GTFS data from a directory or ZIP file into SQLite.

        Uses atomic swap: loads into temp DB, then replaces the target DB, so a
        running engine refreshing its registry never reads a half-built file.

        Args:
            gtfs_path: Path to GTFS directory or ZIP file.

        Returns:
            Dictionary with row counts per table.

        Raises:
            FileNotFoundError: If GTFS path doesn't exist.
            ValueError: If required GTFS files or columns are missing.
        """
        gtfs_path = Path(gtfs_path)
        if not gtfs_path.exists():
            raise FileNotFoundError(f"GTFS path not found: {gtfs_path}")

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        temp_db = self.db_path.with_suffix(".tmp.db")

        try:
            # Remove temp db if it exists from a previous failed run
            temp_db.unlink(missing_ok=True)

            async with aiosqlite.connect(temp_db) as db:
                await db.execute("PRAGMA journal_mode=OFF")
                await db.execute("PRAGMA synchronous=OFF")

                await db.executescript(SCHEMA_SQL)
                await db.commit()
                row_counts = await self._load_all_tables(db, gtfs_path)
                logger.info("Creating indexes...")
                await db.executescript(INDEX_SQL)
                await db.commit()
                await self._verify_integrity(db)

            # atomic swap
            temp_db.replace(self.db_path)

            logger.info(f"Registry ingestion complete: {self.db_path}")
            return row_counts

        except Exception:
            temp_db.unlink(missing_ok=True)
            raise

    async def _load_all_tables(self, db: aiosqlite.Connection, gtfs_path: Path) -> dict[str, int]:
        """Load every known table from a directory or ZIP."""
        row_counts: dict[str, int] = {}
        archive = (
            zipfile.ZipFile(gtfs_path, "r")
            if gtfs_path.is_file() and gtfs_path.suffix == ".zip"
            else None
        )
        try:
            for table_name, (csv_filename, columns) in TABLE_DEFINITIONS.items():
                with _open_csv(gtfs_path, csv_filename, archive) as text_file:
                    if text_file is None:
                        if table_name in REQUIRED_FILES:
                            raise ValueError(f"Required file {csv_filename} not found")
                        logger.warning(f"Optional file {csv_filename} not found")
                        row_counts[table_name] = 0
                        continue
                    row_counts[table_name] = await self._load_table(
                        db, table_name, columns, text_file, csv_filename
                    )
        finally:
            if archive is not None:
                archive.close()
        return row_counts

    async def _load_table(
        self,
        db: aiosqlite.Connection,
        table_name: str,
        columns: list[str],
        text_file: TextIO,
        csv_filename: str,
    ) -> int:
        """Load a single CSV stream into a table."""
        logger.info(f"Loading {table_name} from {csv_filename}...")

        placeholders = ",".join(["?"] * len(columns))
        insert_sql = f"INSERT INTO {table_name} ({','.join(columns)}) VALUES ({placeholders})"

        total_rows = 0
        skipped_rows = 0
        chunk: list[tuple[Any, ...]] = []
        required = REQUIRED_COLUMNS.get(table_name, [])

        reader = csv.reader(text_file)
        header_index = self._build_header_index(
            reader, columns, OPTIONAL_COLUMNS.get(table_name, set()), csv_filename
        )
        for row in reader:
            row_dict = self._row_from_index(row, header_index)
            if not self._has_required_values(row_dict, required):
                skipped_rows += 1
                continue
            chunk.append(tuple(self._convert_value(row_dict.get(col)) for col in columns))

            if len(chunk) >= CHUNK_SIZE:
                await db.executemany(insert_sql, chunk)
                total_rows += len(chunk)
                chunk = []

        if chunk:
            await db.executemany(insert_sql, chunk)
            total_rows += len(chunk)

        await db.commit()
        logger.info(
            f"  Loaded {total_rows:,} rows into {table_name}"
            + (f" (skipped {skipped_rows:,} invalid)" if skipped_rows else "")
        )
        return total_rows

    def _convert_value(self, value: str | None) -> Any:
        """Convert CSV value to appropriate Python type."""
        if value is None or value.strip() == "":
            return None
        return value.strip()

    def _has_required_values(self, row: dict[str, str], required: list[str]) -> bool:
        """Return True if all required columns have non-empty values."""
        return all(row.get(col, "").strip() for col in required)

    def _build_header_index(
        self, reader: Any, columns: list[str], optional: set[str], filename: str
    ) -> dict[str, int]:
        """Map expected column names to their CSV positions."""
        header = next(reader, None)
        if header is None:
            raise ValueError(f"{filename} is empty")
        header_index: dict[str, int] = {}
        for idx, name in enumerate(header):
            cleaned = name.strip()
            if cleaned in columns and cleaned not in header_index:
                header_index[cleaned] = idx
        missing = [col for col in columns if col not in header_index and col not in optional]
        if missing:
            raise ValueError(f"{filename} missing columns: {', '.join(missing)}")
        return header_index

    def _row_from_index(self, row: list[str], header_index: dict[str, int]) -> dict[str, str]:
        """Map a CSV row list to a dict by header index."""
        return {col: row[idx] if idx < len(row) else "" for col, idx in header_index.items()}

    async def _verify_integrity(self, db: aiosqlite.Connection) -> None:
        """Verify the tables the registry needs are populated."""
        logger.info("Verifying database integrity...")

        for table_name in ("routes", "stops", "trips", "stop_times"):
            async with db.execute(f"SELECT COUNT(*) FROM {table_name}") as cursor:
                row = await cursor.fetchone()
                if row is None or row[0] == 0:
                    raise ValueError(f"No {table_name} loaded - check GTFS data")

        async with db.execute("SELECT COUNT(*) FROM vehicles") as cursor:
            row = await cursor.fetchone()
            if row is None or row[0] == 0:
                logger.warning("No vehicles loaded - every position report will be rejected")

        logger.info("Database integrity verified")


@contextmanager
def _open_csv(
    gtfs_path: Path, csv_filename: str, archive: zipfile.ZipFile | None
) -> Iterator[TextIO | None]:
    """Open a feed file from a directory or ZIP; yields None when it is absent."""
    if archive is not None:
        if csv_filename not in archive.namelist():
            yield None
            return
        with archive.open(csv_filename) as raw:
            yield io.TextIOWrapper(raw, encoding="utf-8-sig")
        return

    csv_path = gtfs_path / csv_filename
    if not csv_path.exists():
        yield None
        return
    with open(csv_path, encoding="utf-8-sig") as f:
        yield f


async def get_table_counts(db_path: Path) -> dict[str, int]:
    """Get row counts for all tables in the database.

    Args:
        db_path: Path to the SQLite database.

    Returns:
        Dictionary mapping table names to row counts.
    """
    counts: dict[str, int] = {}
    async with aiosqlite.connect(db_path) as db:
        for table_name in TABLE_DEFINITIONS:
            async with db.execute(f"SELECT COUNT(*) FROM {table_name}") as cursor:
                row = await cursor.fetchone()
                counts[table_name] = row[0] if row else 0
    return counts
