"""Unit tests for venue capacity estimates."""

import pytest

from src.ingestion.venue_capacity import PatternVenueCapacityLookup


@pytest.fixture
def lookup():
    return PatternVenueCapacityLookup(
        {"arena": 12000, "concert hall": 800, "hall": 300, "divadlo": 500},
        {"Sports": 0.9, "Arts & Culture": 0.8},
    )


class TestPatternVenueCapacityLookup:
    def test_category_multiplier(self, lookup):
        assert lookup.estimate("O2 Arena", "Sports") == 10800

    def test_default_multiplier(self, lookup):
        assert lookup.estimate("O2 Arena", "Business") == 8400

    def test_longest_pattern_wins(self, lookup):
        """'concert hall' should match before the shorter 'hall'."""
        assert lookup.estimate("Rudolfinum Concert Hall", "Arts & Culture") == 640

    def test_diacritics_folded(self, lookup):
        assert lookup.estimate("Národní Divadlo", "Arts & Culture") == 400

    def test_whole_words_only(self, lookup):
        assert lookup.estimate("Hallway Gallery") is None

    @pytest.mark.parametrize("venue", [None, "", "Lucerna"])
    def test_unknown(self, lookup, venue):
        assert lookup.estimate(venue) is None

    def test_from_config_section(self):
        lookup = PatternVenueCapacityLookup.from_config(
            {"patterns": {"stadium": 15000}, "multipliers": {"Sports": 1.0}}
        )
        assert lookup.estimate("Stadion Letná Stadium", "Sports") == 15000
