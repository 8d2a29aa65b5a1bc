"""
Conversion between marketplace JSON payloads and domain models.

Payload format (camelCase, as served by the marketplace API):

    availability: [{"dayOfWeek": 1, "date": null, "startTime": "09:00", "endTime": "12:00"}]
    pricing:      [{"duration": 60, "price": "35.00", "isActive": true, "isCustom": false,
                    "includesScreenSharing": false, ...}]
    services:     {"screenSharing": 5, "translation": 10, "recording": 8, "transcription": 12}
"""

from typing import Any, Dict, Iterable, List, Mapping

from ..domain.exceptions import ValidationError
from ..domain.models import (
    DEFAULT_CURRENCY,
    AddOnPrices,
    AvailabilityRules,
    DateRule,
    PricingTier,
    WeeklyRule,
    to_decimal,
)

_TIER_FLAGS = {
    "includesScreenSharing": "includes_screen_sharing",
    "includesTranslation": "includes_translation",
    "includesRecording": "includes_recording",
    "includesTranscription": "includes_transcription",
}

_SERVICE_KEYS = {
    "screenSharing": "screen_sharing",
    "translation": "translation",
    "recording": "recording",
    "transcription": "transcription",
}


def parse_rules(rows: Iterable[Mapping[str, Any]]) -> AvailabilityRules:
    """
    Build a rule snapshot from availability rows.

    A row with ``dayOfWeek`` is a weekly rule, otherwise it must carry a
    ``date``. Malformed rows raise instead of being skipped.

    Raises:
        ValidationError: If a row has no day/date or an unparseable time
    """
    weekly: List[WeeklyRule] = []
    dated: List[DateRule] = []

    for row in rows:
        try:
            start, end = row["startTime"], row["endTime"]
        except KeyError as exc:
            raise ValidationError(f"Availability row is missing {exc.args[0]}: {dict(row)}") from exc

        if row.get("dayOfWeek") is not None:
            weekly.append(WeeklyRule.from_strings(row["dayOfWeek"], start, end))
        elif row.get("date"):
            # Dates may arrive as full ISO timestamps
            dated.append(DateRule.from_strings(str(row["date"])[:10], start, end))
        else:
            raise ValidationError(f"Availability row has neither dayOfWeek nor date: {dict(row)}")

    return AvailabilityRules.of(weekly, dated)


def parse_tier(row: Mapping[str, Any]) -> PricingTier:
    """Build a PricingTier from a pricing row."""
    try:
        duration = int(row["duration"])
        price = to_decimal(row["price"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid pricing row: {dict(row)}") from exc

    flags = {attr: bool(row.get(key, False)) for key, attr in _TIER_FLAGS.items()}
    return PricingTier(
        duration=duration,
        price=price,
        is_active=bool(row.get("isActive", True)),
        is_custom=bool(row.get("isCustom", False)),
        currency=row.get("currency") or DEFAULT_CURRENCY,
        **flags,
    )


def tier_to_payload(tier: PricingTier) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "duration": tier.duration,
        "price": str(tier.price),
        "currency": tier.currency,
        "isActive": tier.is_active,
        "isCustom": tier.is_custom,
    }
    for key, attr in _TIER_FLAGS.items():
        payload[key] = getattr(tier, attr)
    return payload


def parse_add_on_prices(data: Mapping[str, Any], defaults: AddOnPrices | None = None) -> AddOnPrices:
    """Build the add-on price table; missing entries keep their default."""
    base = defaults or AddOnPrices()
    values = {
        attr: to_decimal(data[key], field_name=f"{key} price") if data.get(key) is not None
        else getattr(base, attr)
        for key, attr in _SERVICE_KEYS.items()
    }
    return AddOnPrices(**values)
