"""MCP application instance.

This module exists to avoid circular import issues when running with `python -m`.
All tool modules should import `mcp` from here, not from server.py.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

logger = logging.getLogger(__name__)


@asynccontextmanager
async def engine_lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Run the engine's background tasks for as long as the server is up."""
    from bustrack.services.fleet_service import get_engine

    engine = await get_engine()
    await engine.start()
    try:
        yield
    finally:
        await engine.stop()


# Initialize the MCP server
mcp = FastMCP(
    "Bus Tracker",
    instructions=(
        "Live bus fleet positions and arrival estimates - fleet snapshots, "
        "per-vehicle ETAs for downstream stops, and route lookup"
    ),
    lifespan=engine_lifespan,
)
