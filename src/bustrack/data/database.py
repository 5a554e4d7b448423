"""Read-only access to the registry SQLite database built by ``bustrack ingest``."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from bustrack.data.config import get_fleet_config
from bustrack.exceptions import RegistryUnavailableError

# Tables the registry loader reads; vehicles may be empty but must exist
REGISTRY_TABLES = ("routes", "stops", "trips", "stop_times", "vehicles")


def get_db_path() -> Path:
    """Get the database path from configuration (``BUSTRACK_DB_PATH``)."""
    return get_fleet_config().db_path


@asynccontextmanager
async def open_registry(db_path: Path | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Open the registry read-only, with Row factory, after checking its schema.

    The engine never writes reference data; ingestion replaces the file as a
    whole, so a read-only connection cannot interfere with a concurrent load.

    Args:
        db_path: Optional path to the database. Defaults to the configured path.

    Yields:
        aiosqlite.Connection configured with Row factory for dict-like access.

    Raises:
        RegistryUnavailableError: If the file is missing or lacks registry tables.
        aiosqlite.Error: If the file is not a readable SQLite database.
    """
    if db_path is None:
        db_path = get_db_path()

    if not db_path.exists():
        raise RegistryUnavailableError(
            f"Registry not found at {db_path}. Run 'bustrack ingest <gtfs_path>' to create it."
        )

    uri = f"{db_path.resolve().as_uri()}?mode=ro"
    async with aiosqlite.connect(uri, uri=True) as db:
        db.row_factory = aiosqlite.Row
        async with db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
            present = {row["name"] async for row in cursor}
        missing = [table for table in REGISTRY_TABLES if table not in present]
        if missing:
            raise RegistryUnavailableError(
                f"Registry at {db_path} is missing tables: {', '.join(missing)}. "
                "Re-run 'bustrack ingest <gtfs_path>'."
            )
        yield db
