"""
Domain models for availability rules, pricing tiers and booking charges.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Tuple

import pendulum

from .exceptions import ValidationError

_CLOCK_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")

CENTS = Decimal("0.01")
DEFAULT_CURRENCY = "EUR"
STANDARD_DURATIONS = (0, 30, 60, 90)


def parse_clock(value: str | time) -> time:
    """
    Parse a wall-clock value in ``HH:MM`` (or ``HH:MM:SS``) form.

    Raises:
        ValidationError: If the value is not a valid clock time
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)

    match = _CLOCK_PATTERN.match(str(value).strip())
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")

    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def format_clock(value: time) -> str:
    """Format a time as ``HH:MM``."""
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_calendar_date(value: str | date) -> date:
    """
    Parse a calendar date in ``YYYY-MM-DD`` form.

    Raises:
        ValidationError: If the value is not a valid date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        return pendulum.from_format(str(value).strip(), "YYYY-MM-DD").date()
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def to_decimal(value: object, field_name: str = "price") -> Decimal:
    """Convert a numeric or string amount to Decimal without float noise."""
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {field_name} '{value}'") from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid {field_name} '{value}', must be a finite number")
    return result


def weekday_index(day: date) -> int:
    """Return the weekday with Sunday=0 .. Saturday=6."""
    return day.isoweekday() % 7


def _validate_window(start_time: time, end_time: time) -> None:
    if start_time > end_time:
        raise ValidationError(
            f"Start time {format_clock(start_time)} must not be after end time {format_clock(end_time)}"
        )


@dataclass(frozen=True)
class WeeklyRule:
    """
    Recurring availability on one weekday.

    Invariant: start_time must not be after end_time. An empty window
    (start == end) is kept but offers no slots.
    """
    day_of_week: int  # 0=Sunday, 6=Saturday
    start_time: time
    end_time: time

    def __post_init__(self):
        if self.day_of_week not in range(7):
            raise ValidationError(f"day_of_week must be between 0 and 6, got {self.day_of_week}")
        _validate_window(self.start_time, self.end_time)

    @classmethod
    def from_strings(cls, day_of_week: int, start_time: str, end_time: str) -> "WeeklyRule":
        return cls(
            day_of_week=int(day_of_week),
            start_time=parse_clock(start_time),
            end_time=parse_clock(end_time),
        )

    def applies_to(self, day: date) -> bool:
        return weekday_index(day) == self.day_of_week


@dataclass(frozen=True)
class DateRule:
    """
    Availability on one specific calendar date.

    Invariant: start_time must not be after end_time. An empty window
    (start == end) is kept but offers no slots.
    """
    date: date
    start_time: time
    end_time: time

    def __post_init__(self):
        _validate_window(self.start_time, self.end_time)

    @classmethod
    def from_strings(cls, rule_date: str | date, start_time: str, end_time: str) -> "DateRule":
        return cls(
            date=parse_calendar_date(rule_date),
            start_time=parse_clock(start_time),
            end_time=parse_clock(end_time),
        )

    def applies_to(self, day: date) -> bool:
        return self.date == day


@dataclass(frozen=True)
class AvailabilityRules:
    """
    Immutable snapshot of one host's availability rules.

    A single snapshot feeds each slot resolution so a concurrent rule edit
    can never be observed half-applied.
    """
    weekly_rules: Tuple[WeeklyRule, ...] = ()
    date_rules: Tuple[DateRule, ...] = ()

    @classmethod
    def of(cls, weekly_rules: Iterable[WeeklyRule] = (), date_rules: Iterable[DateRule] = ()) -> "AvailabilityRules":
        return cls(weekly_rules=tuple(weekly_rules), date_rules=tuple(date_rules))

    def is_empty(self) -> bool:
        return not self.weekly_rules and not self.date_rules


class AddOn(str, Enum):
    """Optional paid services layered onto a session."""
    SCREEN_SHARING = "screen_sharing"
    TRANSLATION = "translation"
    RECORDING = "recording"
    TRANSCRIPTION = "transcription"

    @property
    def tier_flag(self) -> str:
        """Name of the matching inclusion flag on PricingTier."""
        return f"includes_{self.value}"

    @classmethod
    def parse(cls, value: "str | AddOn") -> "AddOn":
        if isinstance(value, AddOn):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        aliases = {"screensharing": "screen_sharing"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValidationError(f"Unknown add-on '{value}'") from exc


@dataclass(frozen=True)
class PricingTier:
    """
    A duration/price combination offered by a host.

    ``duration`` is the natural key; 0 means free consultation.
    """
    duration: int
    price: Decimal
    is_active: bool = True
    is_custom: bool = False
    includes_screen_sharing: bool = False
    includes_translation: bool = False
    includes_recording: bool = False
    includes_transcription: bool = False
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self):
        if self.duration < 0:
            raise ValidationError(f"Duration must not be negative, got {self.duration}")
        if not self.price.is_finite() or self.price < 0:
            raise ValidationError(f"Price must be a finite, non-negative amount, got {self.price}")

    def includes(self, add_on: AddOn) -> bool:
        return getattr(self, add_on.tier_flag)

    def with_add_on(self, add_on: AddOn, included: bool) -> "PricingTier":
        return replace(self, **{add_on.tier_flag: included})

    def included_add_ons(self) -> FrozenSet[AddOn]:
        return frozenset(add_on for add_on in AddOn if self.includes(add_on))


@dataclass(frozen=True)
class AddOnPrices:
    """Platform-configured price of each add-on."""
    screen_sharing: Decimal = Decimal("5.00")
    translation: Decimal = Decimal("10.00")
    recording: Decimal = Decimal("8.00")
    transcription: Decimal = Decimal("12.00")

    def price_of(self, add_on: AddOn) -> Decimal:
        return getattr(self, add_on.value)


@dataclass(frozen=True)
class HostServices:
    """
    Add-ons a host offers, with their configured price.

    An add-on counts as enabled only when its price is above zero.
    """
    prices: Mapping[AddOn, Decimal] = field(default_factory=dict)

    @classmethod
    def from_tiers(cls, tiers: Iterable[PricingTier], price_table: AddOnPrices) -> "HostServices":
        """Build from the add-on flags on a host's active tiers."""
        prices: Dict[AddOn, Decimal] = {}
        for tier in tiers:
            if not tier.is_active:
                continue
            for add_on in tier.included_add_ons():
                prices[add_on] = price_table.price_of(add_on)
        return cls(prices=prices)

    def is_enabled(self, add_on: AddOn) -> bool:
        return self.prices.get(add_on, Decimal("0")) > 0

    def enabled(self) -> FrozenSet[AddOn]:
        return frozenset(add_on for add_on in AddOn if self.is_enabled(add_on))


@dataclass
class BookingSelection:
    """
    Transient choices of one in-progress booking attempt.

    Owned by exactly one BookingWorkflow and discarded on exit.
    """
    date: date | None = None
    time: time | None = None
    tier: PricingTier | None = None
    selected_add_ons: set[AddOn] = field(default_factory=set)

    def time_label(self) -> str | None:
        return format_clock(self.time) if self.time else None


@dataclass(frozen=True)
class ChargeBreakdown:
    """
    Derived split of a booking charge.

    Values are kept unrounded; call ``rounded()`` at the presentation boundary.
    """
    base_price: Decimal
    add_on_total: Decimal
    total: Decimal
    commission: Decimal
    tax: Decimal
    host_payout: Decimal
    currency: str = DEFAULT_CURRENCY

    def rounded(self) -> "ChargeBreakdown":
        """Return a copy with every amount quantized to currency precision."""
        def q(amount: Decimal) -> Decimal:
            return amount.quantize(CENTS, rounding=ROUND_HALF_UP)

        return ChargeBreakdown(
            base_price=q(self.base_price),
            add_on_total=q(self.add_on_total),
            total=q(self.total),
            commission=q(self.commission),
            tax=q(self.tax),
            host_payout=q(self.host_payout),
            currency=self.currency,
        )

    def format_display(self) -> str:
        """
        Format the breakdown for display.
        Format: Total 55.00 EUR | Commission 5.50 | Tax 1.16 | Host 48.35
        """
        shown = self.rounded()
        return (
            f"Total {shown.total} {shown.currency} | Commission {shown.commission} | "
            f"Tax {shown.tax} | Host {shown.host_payout}"
        )
