"""Tests for text normalization utilities."""

import pytest

from bustrack.matching.normalizers import (
    extract_route_number,
    normalize_text,
    remove_accents,
)


class TestRemoveAccents:
    """Tests for accent removal."""

    def test_remove_accents_basic(self) -> None:
        assert remove_accents("Préfontaine") == "Prefontaine"
        assert remove_accents("Côte-des-Neiges") == "Cote-des-Neiges"

    def test_remove_accents_no_change(self) -> None:
        assert remove_accents("Campus Loop") == "Campus Loop"

    def test_remove_accents_empty(self) -> None:
        assert remove_accents("") == ""


class TestNormalizeText:
    """Tests for full text normalization."""

    def test_normalize_lowercase(self) -> None:
        assert normalize_text("CAMPUS LOOP") == "campus loop"

    def test_normalize_accents(self) -> None:
        assert normalize_text("Aéroport") == "aeroport"

    def test_normalize_abbreviations(self) -> None:
        assert normalize_text("Univ. Ctr - Main Stn") == "university center - main station"
        assert normalize_text("Park Ave") == "park avenue"
        assert normalize_text("DT Exp") == "downtown express"

    def test_abbreviation_only_whole_words(self) -> None:
        assert normalize_text("Cave Road") == "cave road"
        assert normalize_text("Expo Centre") == "expo centre"

    def test_normalize_whitespace(self) -> None:
        assert normalize_text("  Campus    Loop  ") == "campus loop"


class TestExtractRouteNumber:
    """Tests for route number extraction."""

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("24", "24"),
            ("route 24", "24"),
            ("Bus 7a", "7A"),
            ("line 3", "3"),
            ("#80", "80"),
            ("no. 12", "12"),
            ("the 51", "51"),
        ],
    )
    def test_route_numbers(self, query: str, expected: str) -> None:
        assert extract_route_number(query) == expected

    @pytest.mark.parametrize("query", ["campus loop", "route", "24 downtown", ""])
    def test_not_route_numbers(self, query: str) -> None:
        assert extract_route_number(query) is None
