"""MCP tools for live fleet state and arrival estimates."""

from datetime import datetime

from bustrack.app import mcp
from bustrack.models.eta import ETAResult
from bustrack.models.responses import GetFleetSnapshotResponse, GetVehicleResponse, IngestResult
from bustrack.services import fleet_service


@mcp.tool()
async def get_fleet_snapshot(route_id: str | None = None) -> GetFleetSnapshotResponse:
    """Get the current position, status and ETAs of every active bus.

    The snapshot is refreshed on a fixed cadence (every few seconds), so
    repeated calls within one interval return the same snapshot. Buses that
    have stopped reporting show status "out-of-service" with no ETAs.

    Examples:
        get_fleet_snapshot()  # Whole fleet
        get_fleet_snapshot(route_id="24")  # Only buses on route 24

    Args:
        route_id: Only include buses assigned to this route.

    Returns:
        GetFleetSnapshotResponse with one entry (vehicle state + ETAs) per bus.
    """
    return await fleet_service.get_fleet_snapshot(route_id=route_id)


@mcp.tool()
async def get_vehicle(vehicle_id: str) -> GetVehicleResponse:
    """Get the current state of one bus and its ETAs.

    Args:
        vehicle_id: Vehicle id from the fleet roster.

    Returns:
        GetVehicleResponse with found=False if the vehicle is unknown.
    """
    return await fleet_service.get_vehicle(vehicle_id)


@mcp.tool()
async def get_eta(vehicle_id: str) -> ETAResult:
    """Get projected arrival times of one bus at every stop ahead of it.

    ETAs use the bus's position along its route and its smoothed speed.
    When the bus is stopped, scheduled or average route speed is used
    (confidence "medium"); when it is off its route, a straight-line
    estimate is used (confidence "low").

    Args:
        vehicle_id: Vehicle id from the fleet roster.

    Returns:
        ETAResult. available=False with unavailable_reason when no estimate
        can be made (unknown, inactive, stale, no route, no position yet).
        available=True with no projections when the bus is past its last stop.
    """
    return await fleet_service.get_eta(vehicle_id)


@mcp.tool()
async def report_position(
    vehicle_id: str,
    lat: float,
    lng: float,
    timestamp: datetime,
    speed_kmh: float | None = None,
    heading_deg: float | None = None,
    sequence_number: int | None = None,
) -> IngestResult:
    """Report a GPS position for a bus.

    Reports may arrive late, duplicated or out of order: a report older than
    the bus's latest accepted one is rejected as "out_of_order" and changes
    nothing.

    Args:
        vehicle_id: Vehicle id from the fleet roster.
        lat: Latitude in degrees.
        lng: Longitude in degrees.
        timestamp: Time the position was measured (ISO 8601).
        speed_kmh: Ground speed; derived from consecutive positions if omitted.
        heading_deg: Compass heading; derived from movement if omitted.
        sequence_number: Per-vehicle increasing counter; orders reports
            instead of the timestamp when given.

    Returns:
        IngestResult with accepted=True, or the rejection reason
        (unknown_vehicle, out_of_order, implausible_value).
    """
    return await fleet_service.report_position(
        vehicle_id=vehicle_id,
        lat=lat,
        lng=lng,
        timestamp=timestamp,
        speed_kmh=speed_kmh,
        heading_deg=heading_deg,
        sequence_number=sequence_number,
    )
