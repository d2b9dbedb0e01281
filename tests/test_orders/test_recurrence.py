"""
Tests for recurrence rule validation, merging and the recurring predicate.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from recurring_orders.schemas.orders import RecurrenceRequest
from recurring_orders.services.orders.exceptions import OrderValidationError
from recurring_orders.services.orders.recurrence import (
    RecurrenceRule,
    build_recurrence_rule,
    has_recurrence_signal,
    merge_recurrence,
    to_calendar_day,
    to_instant,
)

NOW = datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)


# ============================================================================
# Date Normalization Tests
# ============================================================================


class TestDateNormalization:
    """Test conversion of date-like values to UTC instants and days."""

    def test_zulu_string_is_utc(self) -> None:
        assert to_instant("2024-01-05T10:00:00Z") == datetime(
            2024, 1, 5, 10, tzinfo=timezone.utc
        )

    def test_naive_datetime_treated_as_utc(self) -> None:
        assert to_instant(datetime(2024, 1, 5, 10)).tzinfo == timezone.utc

    def test_offset_is_converted_before_taking_the_day(self) -> None:
        # 23:30 at UTC-05:00 is already the next day in UTC
        assert to_calendar_day("2024-01-05T23:30:00-05:00") == date(2024, 1, 6)

    def test_plain_date_string(self) -> None:
        assert to_calendar_day("2024-02-29") == date(2024, 2, 29)

    def test_date_passes_through(self) -> None:
        assert to_calendar_day(date(2024, 3, 1)) == date(2024, 3, 1)


# ============================================================================
# Rule Validation Tests
# ============================================================================


class TestBuildRecurrenceRule:
    """Test validation of raw recurrence data."""

    def test_defaults_start_to_now(self) -> None:
        rule = build_recurrence_rule({"days_of_week": [1]}, NOW)

        assert rule.start_date == NOW
        assert rule.days_of_week == frozenset({1})

    def test_missing_start_without_now_is_rejected(self) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            build_recurrence_rule({"days_of_week": [1]})

        assert exc_info.value.context["errors"][0]["field"] == "start_date"

    def test_weekday_out_of_range(self) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            build_recurrence_rule({"days_of_week": [1, 7]}, NOW)

        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.context["errors"][0]["field"] == "days_of_week"

    def test_negative_weekday(self) -> None:
        with pytest.raises(OrderValidationError):
            build_recurrence_rule({"days_of_week": [-1]}, NOW)

    def test_start_must_precede_end(self) -> None:
        with pytest.raises(OrderValidationError):
            build_recurrence_rule(
                {"start_date": "2024-02-01", "end_date": "2024-01-01"},
                NOW,
            )

    def test_equal_start_and_end_rejected(self) -> None:
        with pytest.raises(OrderValidationError):
            build_recurrence_rule(
                {"start_date": "2024-02-01", "end_date": "2024-02-01"},
                NOW,
            )

    def test_malformed_date(self) -> None:
        with pytest.raises(OrderValidationError):
            build_recurrence_rule({"include_dates": ["not-a-date"]}, NOW)

    def test_day_lists_must_be_lists(self) -> None:
        with pytest.raises(OrderValidationError):
            build_recurrence_rule({"exclude_dates": "2024-01-03"}, NOW)

    def test_notes_length_limit(self) -> None:
        with pytest.raises(OrderValidationError):
            build_recurrence_rule({"notes": "x" * 1001}, NOW)

    def test_day_lists_are_sorted_and_deduplicated(self) -> None:
        rule = build_recurrence_rule(
            {"include_dates": ["2024-01-10", "2024-01-03", "2024-01-10T12:00:00Z"]},
            NOW,
        )

        assert rule.include_dates == (date(2024, 1, 3), date(2024, 1, 10))

    def test_document_round_trip(self) -> None:
        rule = build_recurrence_rule(
            {
                "start_date": "2024-01-01T00:00:00Z",
                "end_date": "2024-03-01T00:00:00Z",
                "days_of_week": [5, 1],
                "exclude_dates": ["2024-01-05"],
                "notes": "Leave at the door",
            },
            NOW,
        )

        document = rule.to_document()

        assert document["days_of_week"] == [1, 5]
        assert document["exclude_dates"] == ["2024-01-05"]
        assert RecurrenceRule.from_document(document) == rule

    def test_from_document_without_rule(self) -> None:
        assert RecurrenceRule.from_document(None) is None
        assert RecurrenceRule.from_document({}) is None


class TestRuleProperties:
    """Test derived properties of a rule."""

    def test_dormant_rule(self) -> None:
        assert build_recurrence_rule({"notes": "soon"}, NOW).is_dormant

    def test_weekly_rule_is_not_dormant(self) -> None:
        assert not build_recurrence_rule({"days_of_week": [2]}, NOW).is_dormant

    def test_has_lapsed_is_inclusive_of_end_day(self) -> None:
        rule = build_recurrence_rule(
            {"start_date": "2024-01-01", "end_date": "2024-01-10T18:00:00Z"},
            NOW,
        )

        assert not rule.has_lapsed(date(2024, 1, 10))
        assert rule.has_lapsed(date(2024, 1, 11))

    def test_open_ended_rule_never_lapses(self) -> None:
        rule = build_recurrence_rule({"days_of_week": [1]}, NOW)
        assert not rule.has_lapsed(date(2099, 1, 1))


# ============================================================================
# Recurring Predicate Tests
# ============================================================================


class TestHasRecurrenceSignal:
    """Test the single predicate used to classify orders as recurring."""

    def test_explicit_flag(self) -> None:
        assert has_recurrence_signal(True, None)

    def test_no_flag_and_no_rule(self) -> None:
        assert not has_recurrence_signal(False, None)

    def test_empty_rule_fields_do_not_count(self) -> None:
        assert not has_recurrence_signal(
            False,
            {"days_of_week": [], "include_dates": [], "notes": "  "},
        )

    @pytest.mark.parametrize(
        "fields",
        [
            {"start_date": "2024-01-01"},
            {"end_date": "2024-02-01"},
            {"notes": "weekly refill"},
            {"days_of_week": [3]},
            {"include_dates": ["2024-01-09"]},
            {"exclude_dates": ["2024-01-09"]},
            {"selected_dates": ["2024-01-09"]},
        ],
    )
    def test_any_populated_field_counts(self, fields: dict) -> None:
        assert has_recurrence_signal(None, fields)

    def test_accepts_request_models(self) -> None:
        assert has_recurrence_signal(False, RecurrenceRequest(days_of_week=[0]))
        assert not has_recurrence_signal(False, RecurrenceRequest())


# ============================================================================
# Merge Tests
# ============================================================================


class TestMergeRecurrence:
    """Test overlaying partial recurrence patches onto stored rules."""

    def test_patch_overrides_only_given_fields(self) -> None:
        existing = build_recurrence_rule(
            {"start_date": "2024-01-01", "days_of_week": [1, 3], "notes": "front door"},
            NOW,
        )

        merged = merge_recurrence(existing, {"days_of_week": [5], "notes": None}, NOW)

        assert merged.days_of_week == frozenset({5})
        assert merged.notes == "front door"
        assert merged.start_date == existing.start_date

    def test_merge_without_existing_rule_starts_now(self) -> None:
        merged = merge_recurrence(None, RecurrenceRequest(days_of_week=[2]), NOW)

        assert merged.start_date == NOW
        assert merged.days_of_week == frozenset({2})

    def test_merged_rule_is_validated_as_a_whole(self) -> None:
        existing = build_recurrence_rule(
            {"start_date": "2024-01-01", "end_date": "2024-01-31"},
            NOW,
        )

        with pytest.raises(OrderValidationError):
            merge_recurrence(
                existing,
                {"start_date": NOW + timedelta(days=60)},
                NOW,
            )
