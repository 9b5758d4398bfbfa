"""Tests for relative time phrase parsing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.brain.temporal import TemporalWindow, parse_temporal_window

NOW = datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc)


class TestRules:
    def test_weeks_ago_is_centered_with_half_week_width(self):
        window = parse_temporal_window("what happened 2 weeks ago?", NOW)
        center = NOW - timedelta(days=14)
        assert window.start == center - timedelta(days=3.5)
        assert window.end == center + timedelta(days=3.5)
        assert window.phrase == "2 weeks ago"

    def test_days_ago_is_centered_with_twelve_hour_width(self):
        window = parse_temporal_window("the call 3 days ago", NOW)
        center = NOW - timedelta(days=3)
        assert window.start == center - timedelta(hours=12)
        assert window.end == center + timedelta(hours=12)

    @pytest.mark.parametrize(
        "text, weeks",
        [("a week ago", 1), ("one week ago", 1), ("three weeks ago", 3), ("10 weeks ago", 10)],
    )
    def test_word_and_digit_counts(self, text, weeks):
        window = parse_temporal_window(text, NOW)
        assert window.start == NOW - timedelta(days=7 * weeks) - timedelta(days=3.5)

    def test_last_week(self):
        window = parse_temporal_window("What did we decide last week?", NOW)
        assert window == TemporalWindow(
            start=NOW - timedelta(days=14),
            end=NOW - timedelta(days=7),
            phrase="last week",
        )

    def test_last_month(self):
        window = parse_temporal_window("meetings from last month", NOW)
        assert window.start == NOW - timedelta(days=30)
        assert window.end == NOW

    def test_yesterday(self):
        window = parse_temporal_window("Yesterday's standup", NOW)
        assert window.start == NOW - timedelta(days=2)
        assert window.end == NOW - timedelta(days=1)

    def test_case_insensitive(self):
        assert parse_temporal_window("LAST WEEK", NOW) is not None

    def test_no_phrase_returns_none(self):
        assert parse_temporal_window("what is the budget?", NOW) is None


class TestOutOfRange:
    @pytest.mark.parametrize(
        "text",
        ["what did we decide 200000 weeks ago?", "notes from 999999999 days ago", "12345678901 weeks ago"],
    )
    def test_unrepresentable_count_means_no_window(self, text):
        assert parse_temporal_window(text, NOW) is None

    def test_large_but_representable_count(self):
        window = parse_temporal_window("500 weeks ago", NOW)
        assert window.start == NOW - timedelta(days=3500) - timedelta(days=3.5)


class TestPriority:
    def test_weeks_ago_beats_yesterday(self):
        window = parse_temporal_window("yesterday or 2 weeks ago", NOW)
        assert window.phrase == "2 weeks ago"

    def test_days_ago_beats_last_week(self):
        window = parse_temporal_window("last week, maybe 5 days ago", NOW)
        assert window.phrase == "5 days ago"


class TestPurity:
    def test_same_input_same_window(self):
        text = "what did John say 2 weeks ago"
        assert parse_temporal_window(text, NOW) == parse_temporal_window(text, NOW)

    def test_window_follows_now(self):
        later = NOW + timedelta(days=1)
        a = parse_temporal_window("yesterday", NOW)
        b = parse_temporal_window("yesterday", later)
        assert b.start - a.start == timedelta(days=1)


class TestContains:
    def test_half_open(self):
        window = parse_temporal_window("yesterday", NOW)
        assert window.contains(window.start)
        assert not window.contains(window.end)
        assert window.contains(NOW - timedelta(days=1, hours=6))
