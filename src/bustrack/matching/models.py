from enum import Enum

from pydantic import BaseModel, Field


class MatchConfidence(str, Enum):
    """Confidence level for a match.

    - EXACT: score=100 AND exact match type (ID, number)
    - HIGH: score >= 85 (fuzzy matches only)
    - MEDIUM: score >= 70
    - LOW: score >= 60
    """

    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MatchType(str, Enum):
    """Type of match found."""

    ID_EXACT = "id_exact"  # Route ID match
    NUMBER_EXACT = "number_exact"  # Route number (short name) match
    FUZZY_NAME = "fuzzy_name"  # Fuzzy name match


def confidence_from_score(score: float, match_type: MatchType) -> MatchConfidence:
    """Determine confidence level from score and match type.

    Exact match types always return EXACT confidence.
    Fuzzy matches use score thresholds.
    """
    if match_type in (MatchType.ID_EXACT, MatchType.NUMBER_EXACT):
        return MatchConfidence.EXACT

    if score >= 85:
        return MatchConfidence.HIGH
    if score >= 70:
        return MatchConfidence.MEDIUM
    return MatchConfidence.LOW


class RouteMatch(BaseModel):
    """A matched route with confidence information."""

    route_id: str
    short_name: str | None = Field(default=None, description="Route number or short name")
    long_name: str | None = Field(default=None, description="Full route name")
    is_active: bool
    score: float = Field(description="Match score (0-100)")
    confidence: MatchConfidence = Field(description="Confidence level of the match")
    match_type: MatchType = Field(description="Type of match")


class RouteResolutionResponse(BaseModel):
    """Response from resolve_route tool."""

    query: str = Field(description="Original query string")
    matches: list[RouteMatch] = Field(description="Matched routes, ordered by score")
    best_match: RouteMatch | None = Field(
        default=None, description="Best match (always set to top match when matches exist)"
    )
    resolved: bool = Field(
        description="True if best_match has EXACT or HIGH confidence (safe to auto-use)"
    )
