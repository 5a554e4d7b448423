"""MCP tools for route lookup."""

from bustrack.app import mcp
from bustrack.matching.models import RouteResolutionResponse
from bustrack.models.route import GetRouteStopsResponse, ListRoutesResponse
from bustrack.services import fleet_service


@mcp.tool()
async def list_routes(include_inactive: bool = False) -> ListRoutesResponse:
    """List bus routes with their stop count, length and buses in service.

    Args:
        include_inactive: Also list routes that are currently not running.

    Returns:
        ListRoutesResponse ordered by route id.
    """
    return await fleet_service.list_routes(include_inactive=include_inactive)


@mcp.tool()
async def get_route_stops(route_id: str) -> GetRouteStopsResponse:
    """Get the ordered stops of a route.

    Each stop carries its distance from the start of the route in metres.
    Use resolve_route first if you only know the route's name or number.

    Args:
        route_id: Route id (see list_routes or resolve_route).

    Returns:
        GetRouteStopsResponse with found=False if the route is unknown.
    """
    return await fleet_service.get_route_stops(route_id)


@mcp.tool()
async def resolve_route(
    query: str,
    limit: int = 5,
    min_score: float = 60.0,
) -> RouteResolutionResponse:
    """Resolve a route id, number or name to matching routes using fuzzy matching.

    Resolution strategy (priority order):
    1. Exact route id -> confidence=EXACT
    2. Exact route number ("24", "route 24", "bus 7A") -> confidence=EXACT
    3. Fuzzy name matching ("campus lop" -> "Campus Loop") -> confidence by score

    Args:
        query: Route id, number or name.
        limit: Maximum number of matches to return (default 5, max 20).
        min_score: Minimum match score 0-100 (default 60).

    Returns:
        RouteResolutionResponse with:
        - matches: List of matched routes with scores and confidence
        - best_match: Top match (always set when matches exist)
        - resolved: True if best_match has EXACT or HIGH confidence (safe to auto-use)
    """
    if limit < 1:
        limit = 1
    elif limit > 20:
        limit = 20

    if min_score < 0:
        min_score = 0
    elif min_score > 100:
        min_score = 100

    return await fleet_service.resolve_route(query=query, limit=limit, min_score=min_score)
