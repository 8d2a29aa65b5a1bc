"""
Charge computation: add-on totals and the commission/tax/payout split.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, Iterable, Mapping

from .exceptions import ValidationError
from .models import DEFAULT_CURRENCY, AddOn, AddOnPrices, ChargeBreakdown, PricingTier, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_COMMISSION_RATE = Decimal("0.10")
DEFAULT_TAX_RATE = Decimal("0.21")


def _selected(selected_add_ons: Iterable[AddOn | str] | Mapping[AddOn | str, bool]) -> FrozenSet[AddOn]:
    if isinstance(selected_add_ons, Mapping):
        return frozenset(AddOn.parse(key) for key, chosen in selected_add_ons.items() if chosen)
    return frozenset(AddOn.parse(key) for key in selected_add_ons)


def compute_add_on_total(
    selected_add_ons: Iterable[AddOn | str] | Mapping[AddOn | str, bool],
    price_table: AddOnPrices,
) -> Decimal:
    """
    Sum the price of each selected add-on.

    Eligibility is not checked here; callers only pass add-ons the host offers.
    """
    return sum(
        (price_table.price_of(add_on) for add_on in _selected(selected_add_ons)),
        ZERO,
    )


@dataclass(frozen=True)
class TestAccountPolicy:
    """
    Accounts whose bookings are priced at zero.

    Matching is by exact identity (email or username, case-insensitive) and
    only while the policy is enabled.
    """
    __test__ = False  # not a pytest test class

    enabled: bool = False
    identities: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, identities: Iterable[str], enabled: bool = True) -> "TestAccountPolicy":
        return cls(enabled=enabled, identities=frozenset(i.strip().lower() for i in identities))

    def is_test_account(self, account: str | None) -> bool:
        if not self.enabled or not account:
            return False
        return account.strip().lower() in self.identities

    def is_test_booking(self, account: str | None, host: str | None = None) -> bool:
        """A booking is a test booking when either side is a test account."""
        return self.is_test_account(account) or self.is_test_account(host)


@dataclass(frozen=True)
class PriceQuote:
    base_price: Decimal
    add_on_total: Decimal
    waived: bool = False

    @property
    def total(self) -> Decimal:
        return self.base_price + self.add_on_total


class AddOnCalculator:
    """Combines a tier's base price with the selected add-ons."""

    def __init__(self, price_table: AddOnPrices, test_accounts: TestAccountPolicy | None = None):
        self.price_table = price_table
        self.test_accounts = test_accounts or TestAccountPolicy()

    def compute_add_on_total(
        self,
        selected_add_ons: Iterable[AddOn | str] | Mapping[AddOn | str, bool],
    ) -> Decimal:
        return compute_add_on_total(selected_add_ons, self.price_table)

    def quote(
        self,
        tier: PricingTier,
        selected_add_ons: Iterable[AddOn | str] | Mapping[AddOn | str, bool],
        *,
        account: str | None = None,
        host: str | None = None,
    ) -> PriceQuote:
        """Base and add-on prices for a selection, zeroed when the client or host is a test account."""
        if self.test_accounts.is_test_booking(account, host):
            logger.warning(
                "Test booking (account=%s, host=%s): pricing waived for %s-minute booking",
                account, host, tier.duration,
            )
            return PriceQuote(base_price=ZERO, add_on_total=ZERO, waived=True)

        return PriceQuote(
            base_price=tier.price,
            add_on_total=self.compute_add_on_total(selected_add_ons),
        )


class ChargeSplitter:
    """
    Derives platform commission, tax and host payout from a total.

    Tax is levied on the commission, not on the total.
    """

    def __init__(
        self,
        commission_rate: Decimal | float | str = DEFAULT_COMMISSION_RATE,
        tax_rate: Decimal | float | str = DEFAULT_TAX_RATE,
        currency: str = DEFAULT_CURRENCY,
    ):
        self.commission_rate = to_decimal(commission_rate, field_name="commission rate")
        self.tax_rate = to_decimal(tax_rate, field_name="tax rate")
        self.currency = currency

        for name, rate in (("commission", self.commission_rate), ("tax", self.tax_rate)):
            if not ZERO <= rate <= 1:
                raise ValidationError(f"{name} rate must be between 0 and 1, got {rate}")

    def split(
        self,
        total: Decimal | int | str,
        *,
        base_price: Decimal | None = None,
        add_on_total: Decimal = ZERO,
    ) -> ChargeBreakdown:
        """
        Split a total charge. Amounts are not rounded.

        Example (10% commission, 21% tax):
        total 100 -> commission 10, tax 2.1, host payout 87.9
        """
        total = to_decimal(total, field_name="total")
        if total < 0:
            raise ValidationError(f"Total must not be negative, got {total}")

        commission = total * self.commission_rate
        tax = commission * self.tax_rate

        return ChargeBreakdown(
            base_price=base_price if base_price is not None else total - add_on_total,
            add_on_total=add_on_total,
            total=total,
            commission=commission,
            tax=tax,
            host_payout=total - commission - tax,
            currency=self.currency,
        )

    def split_quote(self, quote: PriceQuote) -> ChargeBreakdown:
        return self.split(quote.total, base_price=quote.base_price, add_on_total=quote.add_on_total)
