"""
Tests for slot resolver.
"""

from datetime import date

import pytest

from slotbooker.domain.exceptions import ValidationError
from slotbooker.domain.models import AvailabilityRules, DateRule, WeeklyRule
from slotbooker.domain.slot_resolver import SlotResolver

MONDAY = date(2024, 11, 25)


class TestSlotResolver:
    """Tests for SlotResolver."""

    def test_resolve_slots_half_hour_steps(self):
        """A 09:00-10:30 window yields three half-hour starts."""
        resolver = SlotResolver()
        weekly = [WeeklyRule.from_strings(1, "09:00", "10:30")]

        assert resolver.resolve_slots(MONDAY, weekly, []) == ["09:00", "09:30", "10:00"]

    def test_partial_step_before_end_is_kept(self):
        """A step starting before the end is kept even if it runs past it."""
        resolver = SlotResolver()
        weekly = [WeeklyRule.from_strings(1, "09:00", "10:15")]

        slots = resolver.resolve_slots(MONDAY, weekly, [])

        assert slots == ["09:00", "09:30", "10:00"]
        assert "10:30" not in slots

    def test_later_hours_realign_to_half_hours(self):
        """The first hour starts at the rule's minute, later hours at :00 and :30."""
        resolver = SlotResolver()
        weekly = [WeeklyRule.from_strings(1, "09:15", "11:00")]

        assert resolver.resolve_slots(MONDAY, weekly, []) == ["09:15", "09:45", "10:00", "10:30"]

    def test_empty_window_yields_no_slots(self):
        """A start == end rule gives no slots and does not hide other rules."""
        resolver = SlotResolver()
        weekly = [
            WeeklyRule.from_strings(1, "09:00", "10:00"),
            WeeklyRule.from_strings(1, "12:00", "12:00"),
        ]

        assert resolver.resolve_slots(MONDAY, weekly[1:], []) == []
        assert resolver.resolve_slots(MONDAY, weekly, []) == ["09:00", "09:30"]

    def test_union_of_weekly_and_date_rules(self):
        """Overlapping rules are merged, sorted and deduplicated."""
        resolver = SlotResolver()
        weekly = [
            WeeklyRule.from_strings(1, "14:00", "15:00"),
            WeeklyRule.from_strings(1, "09:00", "10:00"),
        ]
        dated = [DateRule.from_strings("2024-11-25", "09:30", "11:00")]

        slots = resolver.resolve_slots(MONDAY, weekly, dated)

        assert slots == ["09:00", "09:30", "10:00", "10:30", "14:00", "14:30"]

    def test_no_applicable_rule(self):
        """A date without rules has no slots and is not available."""
        resolver = SlotResolver()
        weekly = [WeeklyRule.from_strings(2, "09:00", "10:00")]
        dated = [DateRule.from_strings("2024-11-26", "09:00", "10:00")]

        assert resolver.resolve_slots(MONDAY, weekly, dated) == []
        assert not resolver.is_date_available(MONDAY, weekly, dated)

    def test_sunday_is_day_zero(self):
        """Weekly rules use Sunday=0."""
        resolver = SlotResolver()
        rules = AvailabilityRules.of([WeeklyRule.from_strings(0, "10:00", "11:00")])

        assert resolver.is_available_for(date(2024, 11, 24), rules)
        assert not resolver.is_available_for(MONDAY, rules)

    def test_date_rule_makes_date_available(self):
        resolver = SlotResolver()
        rules = AvailabilityRules.of(date_rules=[DateRule.from_strings("2024-12-24", "10:00", "11:00")])

        assert resolver.is_available_for(date(2024, 12, 24), rules)
        assert resolver.resolve_for(date(2024, 12, 24), rules) == ["10:00", "10:30"]

    def test_custom_step(self):
        resolver = SlotResolver(step_minutes=60)
        weekly = [WeeklyRule.from_strings(1, "09:00", "11:30")]

        assert resolver.resolve_slots(MONDAY, weekly, []) == ["09:00", "10:00", "11:00"]

    @pytest.mark.parametrize("step", [0, -30, 45, 90])
    def test_invalid_step(self, step):
        with pytest.raises(ValidationError):
            SlotResolver(step_minutes=step)


class TestBookableDates:
    """Tests for listing available dates in a range."""

    def test_skips_past_dates(self):
        """Mondays before today are not bookable."""
        resolver = SlotResolver()
        rules = AvailabilityRules.of([WeeklyRule.from_strings(1, "09:00", "10:00")])

        found = resolver.bookable_dates(
            date(2024, 11, 18), date(2024, 12, 2), rules, today=date(2024, 11, 20)
        )

        assert found == [date(2024, 11, 25), date(2024, 12, 2)]

    def test_range_is_inclusive(self):
        resolver = SlotResolver()
        rules = AvailabilityRules.of(date_rules=[DateRule.from_strings("2024-12-24", "10:00", "11:00")])

        assert resolver.bookable_dates(date(2024, 12, 24), date(2024, 12, 24), rules) == [date(2024, 12, 24)]

    def test_empty_rules(self):
        resolver = SlotResolver()

        assert resolver.bookable_dates(date(2024, 11, 1), date(2024, 11, 30), AvailabilityRules()) == []

    def test_reversed_range(self):
        resolver = SlotResolver()

        with pytest.raises(ValidationError):
            resolver.bookable_dates(date(2024, 12, 2), date(2024, 11, 25), AvailabilityRules())
