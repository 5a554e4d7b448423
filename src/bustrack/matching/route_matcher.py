from collections.abc import Iterable

from rapidfuzz import fuzz

from bustrack.matching.models import (
    MatchConfidence,
    MatchType,
    RouteMatch,
    RouteResolutionResponse,
    confidence_from_score,
)
from bustrack.matching.normalizers import extract_route_number, normalize_text
from bustrack.models.route import RouteGeometry


def _compute_fuzzy_score(query_normalized: str, target_normalized: str) -> float:
    """Compute fuzzy match score for route names."""
    token_score = fuzz.token_set_ratio(query_normalized, target_normalized)
    partial_score = fuzz.partial_ratio(query_normalized, target_normalized)
    return token_score * 0.7 + partial_score * 0.3


def _route_to_match(route: RouteGeometry, score: float, match_type: MatchType) -> RouteMatch:
    return RouteMatch(
        route_id=route.route_id,
        short_name=route.short_name,
        long_name=route.long_name,
        is_active=route.is_active,
        score=score,
        confidence=confidence_from_score(score, match_type),
        match_type=match_type,
    )


def resolve_route(
    query: str,
    routes: Iterable[RouteGeometry],
    limit: int = 5,
    min_score: float = 60.0,
) -> RouteResolutionResponse:
    """Resolve a query to matching routes.

    Resolution strategy (priority order):
    1. Exact route id match (case-insensitive) -> score=100, confidence=EXACT
    2. Exact route number match ("24", "route 24" -> short name 24) -> score=100
    3. Fuzzy name match on long name and non-numeric short name

    Args:
        query: Search query (route id, route number, or route name)
        routes: Routes to search
        limit: Maximum number of results to return
        min_score: Minimum fuzzy score threshold (0-100)

    Returns:
        RouteResolutionResponse with matches and resolution status
    """
    query = query.strip()
    if not query:
        return RouteResolutionResponse(query=query, matches=[], best_match=None, resolved=False)

    candidates = list(routes)
    matches: list[RouteMatch] = []
    matched_route_ids: set[str] = set()

    # 1. Exact route id
    for route in candidates:
        if route.route_id.lower() == query.lower():
            matches.append(_route_to_match(route, 100.0, MatchType.ID_EXACT))
            matched_route_ids.add(route.route_id)

    # 2. Exact route number
    route_number = extract_route_number(query)
    if route_number:
        for route in candidates:
            if route.route_id in matched_route_ids or not route.short_name:
                continue
            if route.short_name.strip().upper() == route_number:
                matches.append(_route_to_match(route, 100.0, MatchType.NUMBER_EXACT))
                matched_route_ids.add(route.route_id)

    # 3. Fuzzy name matching
    query_normalized = normalize_text(query)
    for route in candidates:
        if route.route_id in matched_route_ids:
            continue

        best_score = 0.0
        if route.long_name:
            best_score = _compute_fuzzy_score(query_normalized, normalize_text(route.long_name))

        # Short names like "Campus Loop" are names too; bare numbers are not
        if route.short_name and not route.short_name.strip().isdigit():
            best_score = max(
                best_score,
                _compute_fuzzy_score(query_normalized, normalize_text(route.short_name)),
            )

        if best_score >= min_score:
            matches.append(_route_to_match(route, best_score, MatchType.FUZZY_NAME))

    # Sort by score descending, active routes first on ties, then route_id for stability
    matches.sort(key=lambda m: (-m.score, not m.is_active, m.route_id))
    matches = matches[:limit]

    best_match = matches[0] if matches else None
    resolved = best_match is not None and best_match.confidence in (
        MatchConfidence.EXACT,
        MatchConfidence.HIGH,
    )

    return RouteResolutionResponse(
        query=query,
        matches=matches,
        best_match=best_match,
        resolved=resolved,
    )
