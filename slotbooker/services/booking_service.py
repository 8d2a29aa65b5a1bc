"""
Application services for browsing availability and starting bookings.

The service coordinates reading rules, tiers and add-on prices through
collaborator protocols and delegates the actual computation to the domain
layer. Read failures degrade to "nothing available" instead of breaking the
booking flow.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Protocol, Sequence

from ..config import AppConfig
from ..domain.charges import AddOnCalculator, ChargeSplitter, TestAccountPolicy
from ..domain.exceptions import ExternalOperationError
from ..domain.models import AddOn, AddOnPrices, AvailabilityRules, ChargeBreakdown, HostServices, PricingTier
from ..domain.pricing_catalog import PricingCatalog
from ..domain.slot_resolver import SlotResolver
from ..domain.workflow import BookingWorkflow, HostOffer, PlatformGates

logger = logging.getLogger(__name__)


class RuleSource(Protocol):
    """Protocol describing where a host's availability rules come from."""

    async def get_rules(self, host_id: str) -> AvailabilityRules:
        """Return the weekly and date-specific rules of a host."""


class PricingSource(Protocol):
    """Protocol describing read/write access to a host's pricing tiers."""

    async def get_tiers(self, host_id: str) -> List[PricingTier]:
        """Return every tier of a host, active or not."""

    async def upsert_tiers(self, host_id: str, tiers: Sequence[PricingTier]) -> None:
        """Upsert tiers keyed by duration, all or nothing."""


class AddOnPriceSource(Protocol):
    """Protocol describing the platform add-on price table."""

    async def get_add_on_prices(self) -> AddOnPrices:
        """Return the current add-on prices."""


class BookingService:
    """
    Orchestrates collaborator reads and the booking domain logic.

    Each booking is handed its own HostOffer snapshot, so a host editing
    tiers mid-flow never changes a computation in progress.
    """

    def __init__(
        self,
        rule_source: RuleSource,
        pricing_source: PricingSource,
        price_source: AddOnPriceSource,
        *,
        gates: PlatformGates | None = None,
        splitter: ChargeSplitter | None = None,
        test_accounts: TestAccountPolicy | None = None,
        resolver: SlotResolver | None = None,
        free_durations: Sequence[int] = (0,),
        max_active_tiers: int = 5,
        currency: str = "EUR",
        fallback_prices: AddOnPrices | None = None,
    ) -> None:
        self._rule_source = rule_source
        self.pricing_source = pricing_source
        self._price_source = price_source
        self.gates = gates or PlatformGates()
        self.splitter = splitter or ChargeSplitter(currency=currency)
        self.test_accounts = test_accounts or TestAccountPolicy()
        self.resolver = resolver or SlotResolver()
        self.free_durations = tuple(free_durations)
        self.max_active_tiers = max_active_tiers
        self.currency = currency
        self.fallback_prices = fallback_prices or AddOnPrices()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        rule_source: RuleSource,
        pricing_source: PricingSource,
        price_source: AddOnPriceSource,
    ) -> "BookingService":
        platform = config.platform
        return cls(
            rule_source,
            pricing_source,
            price_source,
            gates=platform.gates(),
            splitter=ChargeSplitter(
                commission_rate=platform.commission_rate,
                tax_rate=platform.tax_rate,
                currency=platform.currency,
            ),
            test_accounts=config.test_accounts.to_policy(),
            resolver=SlotResolver(step_minutes=platform.slot_step_minutes),
            free_durations=platform.free_durations,
            max_active_tiers=platform.max_active_tiers,
            currency=platform.currency,
            fallback_prices=config.add_on_prices.to_prices(),
        )

    async def load_rules(self, host_id: str) -> AvailabilityRules:
        """Fetch rules; a failed fetch means no availability."""
        try:
            return await self._rule_source.get_rules(host_id)
        except ExternalOperationError as exc:
            logger.warning("Could not load availability for host %s: %s", host_id, exc)
            return AvailabilityRules()

    async def load_catalog(self, host_id: str) -> PricingCatalog:
        """Fetch tiers; a failed fetch means no tiers."""
        try:
            tiers = await self.pricing_source.get_tiers(host_id)
        except ExternalOperationError as exc:
            logger.warning("Could not load pricing for host %s: %s", host_id, exc)
            tiers = []
        return self.new_catalog(tiers)

    async def load_add_on_prices(self) -> AddOnPrices:
        """Fetch add-on prices, falling back to the configured table."""
        try:
            return await self._price_source.get_add_on_prices()
        except ExternalOperationError as exc:
            logger.warning("Could not load add-on prices, using configured defaults: %s", exc)
            return self.fallback_prices

    def new_catalog(self, tiers: Iterable[PricingTier] = ()) -> PricingCatalog:
        return PricingCatalog(
            tiers,
            allow_free_calls=self.gates.allow_free_calls,
            free_durations=self.free_durations,
            max_active=self.max_active_tiers,
            currency=self.currency,
        )

    async def load_offer(self, host_id: str) -> HostOffer:
        """Read rules, tiers and prices concurrently into one snapshot."""
        rules, catalog, prices = await asyncio.gather(
            self.load_rules(host_id),
            self.load_catalog(host_id),
            self.load_add_on_prices(),
        )
        services = HostServices.from_tiers(catalog.active_tiers(), prices)
        return HostOffer(host_id=host_id, rules=rules, catalog=catalog, services=services, prices=prices)

    async def available_dates(
        self,
        host_id: str,
        start: date,
        end: date,
        today: date | None = None,
    ) -> List[date]:
        rules = await self.load_rules(host_id)
        return self.resolver.bookable_dates(start, end, rules, today=today)

    async def find_slots(self, host_id: str, day: date) -> List[str]:
        """Retrieve rules and compute the slots of one date."""
        rules = await self.load_rules(host_id)
        return self.resolver.resolve_for(day, rules)

    async def start_booking(
        self,
        host_id: str,
        *,
        account: str | None = None,
        today: date | None = None,
    ) -> BookingWorkflow:
        """Open a fresh booking workflow for a host."""
        offer = await self.load_offer(host_id)
        calculator = AddOnCalculator(offer.prices, test_accounts=self.test_accounts)
        return BookingWorkflow(
            offer,
            calculator=calculator,
            splitter=self.splitter,
            resolver=self.resolver,
            gates=self.gates,
            account=account,
            today=today,
        )

    async def quote(
        self,
        host_id: str,
        duration: int,
        add_ons: Iterable[AddOn | str] = (),
        *,
        account: str | None = None,
    ) -> ChargeBreakdown:
        """
        Price a tier plus add-ons without going through the workflow.

        Add-ons are restricted exactly as in the workflow.
        """
        workflow = await self.start_booking(host_id, account=account)
        workflow.select_tier(duration)
        for add_on in list(workflow.selection.selected_add_ons):
            workflow.set_add_on(add_on, False)
        for add_on in add_ons:
            workflow.set_add_on(add_on)
        breakdown = workflow.quote()
        workflow.close()
        return breakdown

    def split(self, total: Decimal | int | str) -> ChargeBreakdown:
        return self.splitter.split(total)
