import argparse
import asyncio
import logging
import sys
from pathlib import Path

from bustrack.app import mcp
from bustrack.data.config import get_fleet_config
from bustrack.exceptions import RegistryUnavailableError
from bustrack.models.responses import HealthResponse
from bustrack.services import fleet_service

# Register tools
from bustrack.tools import fleet_tools, route_tools  # noqa: F401

logger = logging.getLogger(__name__)


@mcp.tool()
async def health() -> HealthResponse:
    """Check if the bus tracker is running and healthy.

    Returns the engine status, version, fleet and route counts, stale
    vehicle count, ingest counters, and the time of the last snapshot.
    """
    return await fleet_service.health()


async def run_ingest(gtfs_path: Path, db_path: Path) -> None:
    """Run GTFS ingestion."""
    from bustrack.data.gtfs_loader import GTFSLoader

    loader = GTFSLoader(db_path)
    row_counts = await loader.ingest(gtfs_path)

    print("\nIngestion complete. Row counts:")
    for table, count in row_counts.items():
        print(f"  {table}: {count:,}")


async def check_registry(db_path: Path) -> None:
    """Load the registry once so a bad database fails before serving.

    Raises:
        RegistryUnavailableError: If the registry cannot be loaded.
    """
    from bustrack.data.registry import load_registry

    registry = await load_registry(db_path)
    logger.info(
        f"Registry ok: {len(registry.routes)} routes, {len(registry.vehicles)} vehicles"
    )


def main() -> None:
    config = get_fleet_config()

    parser = argparse.ArgumentParser(
        prog="bustrack",
        description="Live bus fleet tracking MCP server",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    # ingest command
    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Ingest GTFS routes, stops and vehicles into the registry database",
    )
    ingest_parser.add_argument(
        "gtfs_path",
        type=Path,
        help="Path to GTFS directory or ZIP file",
    )
    ingest_parser.add_argument(
        "--db",
        type=Path,
        default=config.db_path,
        help=f"SQLite database path (default: {config.db_path} or BUSTRACK_DB_PATH env var)",
    )

    args = parser.parse_args()

    # Configure logging (stderr, stdout carries the MCP stdio transport)
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if args.command == "ingest":
        asyncio.run(run_ingest(args.gtfs_path, args.db))
        return

    # Default: run MCP server
    try:
        asyncio.run(check_registry(config.db_path))
    except RegistryUnavailableError as e:
        logger.error(f"Cannot start: {e}")
        sys.exit(1)
    mcp.run()


if __name__ == "__main__":
    main()
