"""Unit tests for date expressions in recall queries."""

from datetime import datetime, timedelta, timezone

from memory_hybrid import time_phrases
from memory_hybrid.time_phrases import parse_time_phrase

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestParseTimePhrase:
    def test_yesterday(self):
        phrase = parse_time_phrase("deployment notes yesterday", now=NOW)

        assert phrase.text == "yesterday"
        assert phrase.since == datetime(2025, 5, 31, tzinfo=timezone.utc)
        assert phrase.query == "deployment notes"

    def test_relative_days(self):
        phrase = parse_time_phrase("notes from 3 days ago", now=NOW)

        assert phrase.since == datetime(2025, 5, 29, tzinfo=timezone.utc)
        assert "ago" not in phrase.query
        assert phrase.query.startswith("notes")

    def test_range_starts_at_midnight(self):
        phrase = parse_time_phrase("deployment notes yesterday", now=NOW)

        assert phrase.since.tzinfo is not None
        assert phrase.since == phrase.since.replace(hour=0, minute=0, second=0, microsecond=0)
        assert NOW - phrase.since < timedelta(days=2)

    def test_no_date_in_query(self):
        assert parse_time_phrase("gardening tomatoes", now=NOW) is None

    def test_bare_phrase_keeps_query(self):
        phrase = parse_time_phrase("yesterday", now=NOW)

        assert phrase.query == "yesterday"

    def test_parser_failure_means_no_range(self, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("locale data missing")

        monkeypatch.setattr(time_phrases, "search_dates", broken)

        assert parse_time_phrase("notes yesterday", now=NOW) is None
