"""Route geometry index: nearest-point projection and distance-along-route."""

import logging
import math
from collections.abc import Iterable

from bustrack.models.route import RouteGeometry, RouteLocation, RouteStop

logger = logging.getLogger(__name__)

# Earth's radius in meters for haversine calculation
EARTH_RADIUS_METERS = 6_371_000

# Metres per degree latitude in the local equirectangular plane
METERS_PER_DEG_LAT = 110_540.0
METERS_PER_DEG_LON_EQUATOR = 111_320.0

# Candidates this close to the best perpendicular distance are treated as ties
NEAR_TIE_METERS = 2.0

# A vehicle within this distance of a stop counts as being at it
AT_STOP_TOLERANCE_M = 5.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the great-circle distance between two points in meters.

    Args:
        lat1, lon1: First point coordinates in degrees.
        lat2, lon2: Second point coordinates in degrees.

    Returns:
        Distance in meters.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compass bearing in degrees (0 = north, 90 = east) from point 1 to point 2."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)
    x = math.sin(delta_lon) * math.cos(lat2_rad)
    y = math.cos(lat1_rad) * math.sin(lat2_rad) - math.sin(lat1_rad) * math.cos(
        lat2_rad
    ) * math.cos(delta_lon)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def to_local_xy(lat: float, lon: float, ref_lat: float, ref_lon: float) -> tuple[float, float]:
    """Approximate metres east/north of a reference point (equirectangular).

    Accurate enough over a single stop-to-stop segment.
    """
    kx = METERS_PER_DEG_LON_EQUATOR * math.cos(math.radians((lat + ref_lat) * 0.5))
    return (lon - ref_lon) * kx, (lat - ref_lat) * METERS_PER_DEG_LAT


def with_distances(route: RouteGeometry) -> RouteGeometry:
    """Return the route with every stop's distance-along-route filled in.

    Distances supplied by the registry are kept when every stop has one;
    otherwise all are recomputed as cumulative haversine distance between
    consecutive stops.

    Raises:
        ValueError: If the route has fewer than two stops or its distances do not
            strictly increase.
    """
    stops = route.stops
    if len(stops) < 2:
        raise ValueError(f"Route {route.route_id} needs at least two stops")

    if any(stop.distance_along_m is None for stop in stops):
        cumulative = 0.0
        rebuilt: list[RouteStop] = [stops[0].model_copy(update={"distance_along_m": 0.0})]
        for prev, stop in zip(stops, stops[1:]):
            cumulative += haversine_distance(prev.lat, prev.lng, stop.lat, stop.lng)
            rebuilt.append(stop.model_copy(update={"distance_along_m": cumulative}))
        stops = tuple(rebuilt)

    for prev, stop in zip(stops, stops[1:]):
        if stop.distance_along_m <= prev.distance_along_m:  # type: ignore[operator]
            raise ValueError(
                f"Route {route.route_id}: distance does not increase at stop {stop.stop_id}"
            )

    return route.model_copy(update={"stops": stops})


class GeoIndex:
    """Immutable per-route stop geometry.

    The route mapping is swapped as a whole by :meth:`replace`, so readers
    always see either the old or the new registry, never a mix.
    """

    def __init__(self, routes: Iterable[RouteGeometry] = ()):
        self._routes: dict[str, RouteGeometry] = self._build(routes)

    @staticmethod
    def _build(routes: Iterable[RouteGeometry]) -> dict[str, RouteGeometry]:
        indexed: dict[str, RouteGeometry] = {}
        for route in routes:
            try:
                indexed[route.route_id] = with_distances(route)
            except ValueError as e:
                logger.warning(f"Skipping route: {e}")
        return indexed

    def replace(self, routes: Iterable[RouteGeometry]) -> None:
        """Swap in a new set of routes (registry refresh)."""
        self._routes = self._build(routes)
        logger.info(f"Geo index loaded {len(self._routes)} routes")

    def get(self, route_id: str) -> RouteGeometry | None:
        return self._routes.get(route_id)

    def routes(self) -> list[RouteGeometry]:
        return sorted(self._routes.values(), key=lambda route: route.route_id)

    def __contains__(self, route_id: object) -> bool:
        return route_id in self._routes

    def __len__(self) -> int:
        return len(self._routes)

    def locate(
        self, route_id: str, lat: float, lng: float, hint_m: float | None = None
    ) -> RouteLocation | None:
        """Project a position onto a route's stop polyline.

        Every segment is projected in a local metric plane with the
        projection parameter clamped to the segment; the nearest one wins.
        Where segments are nearly equidistant (a route that doubles back on
        itself) the candidate closest to ``hint_m``, the vehicle's previous
        distance-along-route, is preferred.

        Args:
            route_id: Route to project onto.
            lat, lng: Position in degrees.
            hint_m: Previous distance-along-route for near-tie breaking.

        Returns:
            RouteLocation, or None if the route is not indexed.
        """
        route = self._routes.get(route_id)
        if route is None:
            return None
        return locate_on_route(route, lat, lng, hint_m)


def locate_on_route(
    route: RouteGeometry, lat: float, lng: float, hint_m: float | None = None
) -> RouteLocation:
    """Nearest-point projection of a position onto a route with distances filled in."""
    stops = route.stops
    last_index = len(stops) - 2

    best_offset = math.inf
    best_s = 0.0
    best_index = 0
    best_beyond = 0.0

    for i in range(len(stops) - 1):
        a, b = stops[i], stops[i + 1]
        bx, by = to_local_xy(b.lat, b.lng, a.lat, a.lng)
        px, py = to_local_xy(lat, lng, a.lat, a.lng)
        seg_len_sq = bx * bx + by * by
        t_raw = 0.0 if seg_len_sq <= 0 else (px * bx + py * by) / seg_len_sq
        t = max(0.0, min(1.0, t_raw))
        offset = math.hypot(px - t * bx, py - t * by)

        start_m = a.distance_along_m or 0.0
        end_m = b.distance_along_m or 0.0
        s = start_m + t * (end_m - start_m)
        beyond = 0.0
        if i == last_index and t_raw > 1.0:
            beyond = (t_raw - 1.0) * math.sqrt(seg_len_sq)

        if offset < best_offset - NEAR_TIE_METERS:
            prefer = True
        elif abs(offset - best_offset) <= NEAR_TIE_METERS and hint_m is not None:
            prefer = abs(s - hint_m) < abs(best_s - hint_m)
        else:
            prefer = offset < best_offset and hint_m is None

        if prefer:
            best_offset, best_s, best_index, best_beyond = offset, s, i, beyond

    last_stop_id = None
    for stop in stops:
        if (stop.distance_along_m or 0.0) <= best_s + AT_STOP_TOLERANCE_M:
            last_stop_id = stop.stop_id
        else:
            break

    # Past the final stop the perpendicular offset is the overshoot itself
    offset_m = best_offset
    if best_beyond > 0:
        offset_m = math.sqrt(max(0.0, best_offset**2 - best_beyond**2))

    return RouteLocation(
        route_id=route.route_id,
        distance_along_m=best_s,
        offset_m=offset_m,
        segment_index=best_index,
        beyond_end_m=best_beyond,
        last_stop_id=last_stop_id,
    )
