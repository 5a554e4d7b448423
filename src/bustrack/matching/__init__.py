"""Fuzzy route lookup by id, number or name."""

from bustrack.matching.models import (
    MatchConfidence,
    MatchType,
    RouteMatch,
    RouteResolutionResponse,
)
from bustrack.matching.normalizers import (
    extract_route_number,
    normalize_text,
    remove_accents,
)
from bustrack.matching.route_matcher import resolve_route

__all__ = [
    # Matchers
    "resolve_route",
    # Models
    "MatchConfidence",
    "MatchType",
    "RouteMatch",
    "RouteResolutionResponse",
    # Normalizers
    "normalize_text",
    "remove_accents",
    "extract_route_number",
]
