"""
Core business logic for resolving bookable time slots.

Pure domain logic without any external dependencies (no API calls, no
database, no I/O). Whether a slot is already taken by another booking is
decided elsewhere.
"""

from datetime import date
from typing import Iterable, List, Sequence

import pendulum

from .exceptions import ValidationError
from .models import AvailabilityRules, DateRule, WeeklyRule

DEFAULT_SLOT_STEP_MINUTES = 30


class SlotResolver:
    """
    Turns weekly and date-specific availability rules into discrete slots.

    Algorithm:
    1. Collect every rule applicable to the date (weekday match or exact date)
    2. Walk each rule in fixed steps: the first hour from the rule's start
       minute, every later hour from :00 (so 09:15 continues 09:45, 10:00)
    3. Keep a step only if it starts strictly before the rule's end time
    4. Union the steps of all rules, ascending, without duplicates
    """

    def __init__(self, step_minutes: int = DEFAULT_SLOT_STEP_MINUTES):
        if step_minutes <= 0 or 60 % step_minutes:
            raise ValidationError(f"Slot step must be a positive divisor of 60 minutes, got {step_minutes}")
        self.step_minutes = step_minutes

    def is_date_available(
        self,
        day: date,
        weekly_rules: Sequence[WeeklyRule],
        date_rules: Sequence[DateRule],
    ) -> bool:
        """Return True if any weekly rule matches the weekday or any date rule matches the date."""
        return any(rule.applies_to(day) for rule in weekly_rules) or any(
            rule.applies_to(day) for rule in date_rules
        )

    def resolve_slots(
        self,
        day: date,
        weekly_rules: Sequence[WeeklyRule],
        date_rules: Sequence[DateRule],
    ) -> List[str]:
        """
        Enumerate the bookable start times (``HH:MM``) for a date.

        Example (step 30):
        Rule: 09:00 - 10:30
        Result: ["09:00", "09:30", "10:00"]

        Returns an empty list when no rule applies.
        """
        applicable = self._applicable_rules(day, weekly_rules, date_rules)

        minutes: set[int] = set()
        for rule in applicable:
            minutes.update(self._walk_rule(rule))

        return [self._format_minutes(value) for value in sorted(minutes)]

    def resolve_for(self, day: date, rules: AvailabilityRules) -> List[str]:
        """Resolve slots from a rule snapshot."""
        return self.resolve_slots(day, rules.weekly_rules, rules.date_rules)

    def is_available_for(self, day: date, rules: AvailabilityRules) -> bool:
        return self.is_date_available(day, rules.weekly_rules, rules.date_rules)

    def bookable_dates(
        self,
        start: date,
        end: date,
        rules: AvailabilityRules,
        today: date | None = None,
    ) -> List[date]:
        """
        List the available dates in an inclusive range.

        Dates before ``today`` are never bookable.
        """
        if end < start:
            raise ValidationError(f"Range end {end} is before range start {start}")

        dates: List[date] = []
        current = pendulum.Date(start.year, start.month, start.day)
        last = pendulum.Date(end.year, end.month, end.day)

        while current <= last:
            if (today is None or current >= today) and self.is_available_for(current, rules):
                dates.append(date(current.year, current.month, current.day))
            current = current.add(days=1)

        return dates

    def _applicable_rules(
        self,
        day: date,
        weekly_rules: Iterable[WeeklyRule],
        date_rules: Iterable[DateRule],
    ) -> List[WeeklyRule | DateRule]:
        rules: List[WeeklyRule | DateRule] = [
            rule for rule in weekly_rules if rule.applies_to(day)
        ]
        rules.extend(rule for rule in date_rules if rule.applies_to(day))
        return rules

    def _walk_rule(self, rule: WeeklyRule | DateRule) -> List[int]:
        """Minutes since midnight of every step starting before the rule ends."""
        end = rule.end_time.hour * 60 + rule.end_time.minute

        steps: List[int] = []
        for hour in range(rule.start_time.hour, 24):
            first = rule.start_time.minute if hour == rule.start_time.hour else 0
            for minute in range(first, 60, self.step_minutes):
                value = hour * 60 + minute
                if value >= end:
                    return steps
                steps.append(value)
        return steps

    @staticmethod
    def _format_minutes(value: int) -> str:
        hours, minutes = divmod(value, 60)
        return f"{hours:02d}:{minutes:02d}"

