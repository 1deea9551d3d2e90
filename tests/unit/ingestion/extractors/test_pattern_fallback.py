"""Unit tests for the pattern-based fallback extractor."""

from src.ingestion.extractors.pattern_fallback import PatternFallbackExtractor

LISTING = """# Program
## [Jazz Night](https://example.com/jazz)
4. prosince 2025
Rock Concert - 12. 12. 2025
Rock Concert - 12. 12. 2025
"""


class TestPatternFallbackExtractor:
    """Tests for date-token heuristics."""

    def test_pairs_dates_with_nearest_titles(self):
        """Date lines should pair with the title line above or the rest of the line."""
        events = PatternFallbackExtractor().extract(LISTING, default_city="Praha")

        assert [(e.title, e.date) for e in events] == [
            ("Jazz Night", "4. prosince 2025"),
            ("Rock Concert", "12. 12. 2025"),
        ]
        assert events[0].url == "https://example.com/jazz"
        assert events[1].url is None
        assert all(e.city == "Praha" for e in events)

    def test_keeps_original_diacritics_in_date(self):
        events = PatternFallbackExtractor().extract("Divadlo Archa\n12. března 2026")
        assert [(e.title, e.date) for e in events] == [("Divadlo Archa", "12. března 2026")]

    def test_not_a_listing(self):
        """Text without date-shaped tokens should produce nothing."""
        extractor = PatternFallbackExtractor()
        assert not extractor.looks_like_listing("Welcome to our website")
        assert extractor.extract("Welcome to our website") == []

    def test_date_without_title(self):
        assert PatternFallbackExtractor().extract("2025-12-04") == []

    def test_max_events_cap(self):
        events = PatternFallbackExtractor(max_events=1).extract(LISTING)
        assert len(events) == 1
