"""Tests for recurrence inference from pasted dates and occurrence expansion."""

import random
from datetime import date

import pytest

from schoolday.calendar.recurrence import (
    RecurrenceRule,
    RecurrenceType,
    expand_occurrences,
    first_occurrence,
    infer_recurrence,
    parse_flexible_date,
    preview_imported_dates,
)
from schoolday.core.errors import NoValidDatesError


class TestParseFlexibleDate:
    def test_iso(self):
        assert parse_flexible_date("2025-09-01") == date(2025, 9, 1)

    def test_us_format(self):
        assert parse_flexible_date("9/8/2025") == date(2025, 9, 8)

    def test_free_text_fallback(self):
        assert parse_flexible_date("September 15, 2025") == date(2025, 9, 15)

    def test_surrounding_whitespace(self):
        assert parse_flexible_date("   2025-09-01\t") == date(2025, 9, 1)

    @pytest.mark.parametrize("line", ["", "   ", "not a date", "2025-02-30", "13/45/2025"])
    def test_unparseable(self, line):
        assert parse_flexible_date(line) is None


class TestInferRecurrence:
    """Classification, anchor, bounds and implied exceptions."""

    def test_weekly_with_gap_yields_exception(self):
        result = infer_recurrence(["2025-09-01", "2025-09-08", "2025-09-22"])
        assert result.rule.type == RecurrenceType.WEEKLY
        assert result.rule.anchor_weekday == 1
        assert result.rule.start_date == date(2025, 9, 1)
        assert result.rule.end_date == date(2025, 9, 22)
        assert result.implied_exceptions == [date(2025, 9, 15)]

    def test_biweekly(self):
        result = infer_recurrence(["2025-09-01", "2025-09-15", "2025-09-29"])
        assert result.rule.type == RecurrenceType.BIWEEKLY
        assert result.implied_exceptions == []

    def test_biweekly_with_skipped_session(self):
        result = infer_recurrence(["2025-09-01", "2025-09-29"])
        assert result.rule.type == RecurrenceType.BIWEEKLY
        assert result.implied_exceptions == [date(2025, 9, 15)]

    def test_monthly_same_day_of_month(self):
        result = infer_recurrence(["2025-01-15", "2025-02-15", "2025-04-15"])
        assert result.rule.type == RecurrenceType.MONTHLY
        assert result.rule.anchor_weekday is None
        assert result.implied_exceptions == [date(2025, 3, 15)]

    def test_irregular_falls_back_to_weekly(self):
        result = infer_recurrence(["2025-09-01", "2025-09-03", "2025-09-10"])
        assert result.rule.type == RecurrenceType.WEEKLY
        assert result.rule.anchor_weekday == 1
        assert result.rule.end_date == date(2025, 9, 10)

    def test_single_date_is_once(self):
        result = infer_recurrence(["2025-10-04"])
        assert result.rule.type == RecurrenceType.ONCE
        assert result.rule.anchor_weekday == 6
        assert result.rule.end_date is None
        assert result.implied_exceptions == []

    def test_duplicates_and_junk_dropped(self):
        result = infer_recurrence(["2025-09-08", "junk", "", "9/1/2025", "2025-09-08"])
        assert result.dates == [date(2025, 9, 1), date(2025, 9, 8)]
        assert result.rule.type == RecurrenceType.WEEKLY

    def test_no_valid_dates(self):
        with pytest.raises(NoValidDatesError, match="Paste at least one valid date"):
            infer_recurrence(["nope", "", "2025-13-01"])

    def test_invariant_under_reordering(self):
        lines = ["2025-09-01", "2025-09-08", "2025-09-22", "2025-10-06", "2025-10-13"]
        expected = infer_recurrence(lines)
        rng = random.Random(7)
        for _ in range(5):
            shuffled = lines[:]
            rng.shuffle(shuffled)
            assert infer_recurrence(shuffled) == expected

    def test_preview_splits_lines(self):
        result = preview_imported_dates("2025-09-01\r\n2025-09-08\n\n2025-09-22\n")
        assert result.dates == [date(2025, 9, 1), date(2025, 9, 8), date(2025, 9, 22)]

    def test_inferred_rule_expands_back_to_input(self):
        lines = ["2025-09-01", "2025-09-08", "2025-09-22", "2025-10-06"]
        result = infer_recurrence(lines)
        expanded = expand_occurrences(
            result.rule, result.implied_exceptions, result.rule.start_date, result.rule.end_date
        )
        assert expanded == result.dates


class TestRecurrenceRule:
    def test_monthly_rejects_anchor(self):
        with pytest.raises(ValueError):
            RecurrenceRule(type=RecurrenceType.MONTHLY, anchor_weekday=1, start_date=date(2025, 1, 1))

    def test_weekly_requires_anchor(self):
        with pytest.raises(ValueError):
            RecurrenceRule(type=RecurrenceType.WEEKLY, start_date=date(2025, 1, 1))

    def test_end_before_start(self):
        with pytest.raises(ValueError):
            RecurrenceRule(
                type=RecurrenceType.WEEKLY, anchor_weekday=1, start_date=date(2025, 2, 1), end_date=date(2025, 1, 1)
            )


class TestExpandOccurrences:
    def test_weekly_in_window_minus_exceptions(self):
        rule = RecurrenceRule(
            type=RecurrenceType.WEEKLY, anchor_weekday=1, start_date=date(2025, 9, 1), end_date=date(2025, 9, 22)
        )
        days = expand_occurrences(rule, [date(2025, 9, 15)], date(2025, 9, 5), date(2025, 9, 30))
        assert days == [date(2025, 9, 8), date(2025, 9, 22)]

    def test_open_ended_runs_to_window_end(self):
        rule = RecurrenceRule(type=RecurrenceType.WEEKLY, anchor_weekday=1, start_date=date(2025, 9, 1))
        days = expand_occurrences(rule, [], date(2025, 9, 10), date(2025, 9, 24))
        assert days == [date(2025, 9, 15), date(2025, 9, 22)]

    def test_biweekly_steps_fourteen_days(self):
        rule = RecurrenceRule(type=RecurrenceType.BIWEEKLY, anchor_weekday=1, start_date=date(2025, 9, 1))
        days = expand_occurrences(rule, [], date(2025, 9, 1), date(2025, 10, 1))
        assert days == [date(2025, 9, 1), date(2025, 9, 15), date(2025, 9, 29)]

    def test_monthly_clamps_without_drift(self):
        rule = RecurrenceRule(type=RecurrenceType.MONTHLY, start_date=date(2025, 1, 31))
        days = expand_occurrences(rule, [], date(2025, 1, 1), date(2025, 5, 31))
        assert days == [date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30), date(2025, 5, 31)]

    def test_once(self):
        rule = RecurrenceRule(type=RecurrenceType.ONCE, anchor_weekday=6, start_date=date(2025, 10, 4))
        assert expand_occurrences(rule, [], date(2025, 10, 1), date(2025, 10, 31)) == [date(2025, 10, 4)]
        assert expand_occurrences(rule, [date(2025, 10, 4)], date(2025, 10, 1), date(2025, 10, 31)) == []
        assert expand_occurrences(rule, [], date(2025, 11, 1), date(2025, 11, 30)) == []

    def test_reversed_window_is_empty(self):
        rule = RecurrenceRule(type=RecurrenceType.WEEKLY, anchor_weekday=1, start_date=date(2025, 9, 1))
        assert expand_occurrences(rule, [], date(2025, 9, 30), date(2025, 9, 1)) == []

    def test_monthly_stops_at_calendar_limit(self):
        rule = RecurrenceRule(type=RecurrenceType.MONTHLY, start_date=date(9999, 11, 15))
        days = expand_occurrences(rule, [], date(9999, 1, 1), date.max)
        assert days == [date(9999, 11, 15), date(9999, 12, 15)]

    def test_never_outside_window_or_on_exception(self):
        rule = RecurrenceRule(type=RecurrenceType.WEEKLY, anchor_weekday=2, start_date=date(2025, 1, 7))
        exceptions = [date(2025, 3, 4), date(2025, 3, 11)]
        start, end = date(2025, 2, 20), date(2025, 4, 20)
        days = expand_occurrences(rule, exceptions, start, end)
        assert days
        assert all(start <= day <= end for day in days)
        assert not set(days) & set(exceptions)
        assert days == sorted(days)
        assert expand_occurrences(rule, exceptions, start, end) == days

    def test_steps_from_first_anchor_weekday(self):
        # Rule entered on a Monday for a Thursday class
        rule = RecurrenceRule(type=RecurrenceType.WEEKLY, anchor_weekday=4, start_date=date(2025, 9, 1))
        assert first_occurrence(rule) == date(2025, 9, 4)
        days = expand_occurrences(rule, [], date(2025, 9, 1), date(2025, 9, 20))
        assert days == [date(2025, 9, 4), date(2025, 9, 11), date(2025, 9, 18)]

    def test_anchor_past_end_date_yields_nothing(self):
        rule = RecurrenceRule(
            type=RecurrenceType.WEEKLY, anchor_weekday=5, start_date=date(2025, 9, 1), end_date=date(2025, 9, 3)
        )
        assert expand_occurrences(rule, [], date(2025, 9, 1), date(2025, 9, 30)) == []
