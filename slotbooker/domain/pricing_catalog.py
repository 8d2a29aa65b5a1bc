"""
Bounded catalog of a host's duration/price tiers.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Sequence

from .exceptions import ConfigurationGatedError, TooManyActiveTiersError, ValidationError
from .models import DEFAULT_CURRENCY, STANDARD_DURATIONS, AddOn, PricingTier, to_decimal

logger = logging.getLogger(__name__)

MAX_ACTIVE_TIERS = 5
FREE_DURATIONS = (0,)


class PricingCatalog:
    """
    Duration-keyed tiers of one host.

    At most ``max_active`` tiers can be active at the same time; the limit
    is enforced when a tier is activated. Every mutation builds a fresh
    tier mapping and swaps it in, so a failed operation leaves the catalog
    untouched.
    """

    def __init__(
        self,
        tiers: Iterable[PricingTier] = (),
        *,
        allow_free_calls: bool = False,
        free_durations: Sequence[int] = FREE_DURATIONS,
        max_active: int = MAX_ACTIVE_TIERS,
        currency: str = DEFAULT_CURRENCY,
    ):
        self.allow_free_calls = allow_free_calls
        self.free_durations = tuple(free_durations)
        self.max_active = max_active
        self.currency = currency
        self._tiers: Dict[int, PricingTier] = {}
        self.replace_all(tiers)

    def replace_all(self, tiers: Iterable[PricingTier]) -> None:
        """Load a snapshot of tiers, last entry winning per duration."""
        loaded: Dict[int, PricingTier] = {}
        for tier in tiers:
            loaded[tier.duration] = tier
        self._tiers = loaded

    def get(self, duration: int) -> PricingTier | None:
        return self._tiers.get(duration)

    def tiers(self) -> List[PricingTier]:
        """All tiers, active or not, ordered by duration."""
        return [self._tiers[duration] for duration in sorted(self._tiers)]

    def active_tiers(self) -> List[PricingTier]:
        """Active tiers ordered by duration."""
        return [tier for tier in self.tiers() if tier.is_active]

    @property
    def active_count(self) -> int:
        return sum(1 for tier in self._tiers.values() if tier.is_active)

    def is_free_duration(self, duration: int) -> bool:
        return duration in self.free_durations

    def activate(
        self,
        duration: int,
        price: Decimal | int | str | None = None,
        *,
        flags: Mapping[AddOn | str, bool] | None = None,
        is_custom: bool | None = None,
    ) -> PricingTier:
        """
        Activate (upsert) the tier for ``duration``.

        An omitted price keeps the stored one, so deactivating and
        reactivating a duration preserves its price.

        Raises:
            ConfigurationGatedError: If a free duration is activated while free calls are disabled
            ValidationError: If no price is known or the price is invalid
            TooManyActiveTiersError: If the active tier limit would be exceeded
        """
        if duration < 0:
            raise ValidationError(f"Duration must not be negative, got {duration}")

        existing = self._tiers.get(duration)

        if self.is_free_duration(duration):
            if not self.allow_free_calls:
                raise ConfigurationGatedError("Free calls are disabled on this platform")
            if price is not None and to_decimal(price) != 0:
                raise ValidationError("A free consultation tier must have price 0")
            price = Decimal("0")

        if price is None:
            if existing is None:
                raise ValidationError(f"A price is required to activate a new {duration}-minute tier")
            new_price = existing.price
        else:
            new_price = to_decimal(price)

        others_active = sum(
            1 for tier in self._tiers.values() if tier.is_active and tier.duration != duration
        )
        if others_active >= self.max_active:
            raise TooManyActiveTiersError(
                f"At most {self.max_active} pricing tiers can be active at once"
            )

        flag_values = self._normalize_flags(flags)

        if existing is None:
            tier = PricingTier(
                duration=duration,
                price=new_price,
                is_active=True,
                is_custom=is_custom if is_custom is not None else duration not in STANDARD_DURATIONS,
                currency=self.currency,
                **flag_values,
            )
        else:
            tier = replace(
                existing,
                price=new_price,
                is_active=True,
                is_custom=existing.is_custom if is_custom is None else is_custom,
                **flag_values,
            )

        updated = dict(self._tiers)
        updated[duration] = tier
        self._tiers = updated

        logger.debug("Activated %s-minute tier at %s %s", duration, tier.price, tier.currency)
        return tier

    def deactivate(self, duration: int) -> None:
        """Mark a tier inactive; the record and its price are kept."""
        existing = self._tiers.get(duration)
        if existing is None or not existing.is_active:
            return

        updated = dict(self._tiers)
        updated[duration] = replace(existing, is_active=False)
        self._tiers = updated
        logger.debug("Deactivated %s-minute tier", duration)

    def set_add_on_inclusion(self, service: AddOn | str, included: bool) -> List[PricingTier]:
        """
        Apply an add-on flag to every active tier as one batch.

        Returns the updated tiers.
        """
        add_on = AddOn.parse(service)

        updated = dict(self._tiers)
        changed: List[PricingTier] = []
        for duration, tier in self._tiers.items():
            if not tier.is_active:
                continue
            new_tier = tier.with_add_on(add_on, included)
            updated[duration] = new_tier
            changed.append(new_tier)

        self._tiers = updated
        logger.debug(
            "Set %s=%s on %d active tier(s)", add_on.value, included, len(changed)
        )
        return sorted(changed, key=lambda tier: tier.duration)

    @staticmethod
    def _normalize_flags(flags: Mapping[AddOn | str, bool] | None) -> Dict[str, bool]:
        if not flags:
            return {}
        return {AddOn.parse(key).tier_flag: bool(value) for key, value in flags.items()}
