import re
import unicodedata
from functools import lru_cache

# Common sign/timetable abbreviations (lowercase stem -> expanded)
ABBREVIATIONS: dict[str, str] = {
    "univ": "university",
    "ctr": "center",
    "stn": "station",
    "hosp": "hospital",
    "blvd": "boulevard",
    "ave": "avenue",
    "dt": "downtown",
    "exp": "express",
}

ABBREVIATION_PATTERN = re.compile(r"\b(" + "|".join(ABBREVIATIONS) + r")\b\.?")

# Leading words that carry no route identity: "route 24", "bus 7A", "line 3"
ROUTE_NUMBER_PATTERN = re.compile(
    r"^(?:(?:route|bus|line|the|no\.?|#)\s*)?(\d+[a-z]?)$", re.IGNORECASE
)


@lru_cache(maxsize=4096)
def remove_accents(text: str) -> str:
    """Remove accents from text.

    Example: "Préfontaine" -> "Prefontaine"
    """
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


@lru_cache(maxsize=4096)
def normalize_text(text: str) -> str:
    """Normalize text for fuzzy matching.

    Lowercases, strips accents, expands abbreviations and collapses whitespace.

    Example: "Univ. Ctr - Main Stn" -> "university center - main station"
    """
    result = remove_accents(text.lower().strip())
    result = ABBREVIATION_PATTERN.sub(lambda m: ABBREVIATIONS[m.group(1)], result)
    return " ".join(result.split())


def extract_route_number(query: str) -> str | None:
    """Extract a route number from query text.

    Returns the route number (upper-cased suffix letter kept) if the query
    looks like one, None otherwise.

    Examples:
        "24" -> "24"
        "route 24" -> "24"
        "bus 7a" -> "7A"
        "#80" -> "80"
        "campus loop" -> None
    """
    match = ROUTE_NUMBER_PATTERN.match(query.strip())
    if match:
        return match.group(1).upper()
    return None
