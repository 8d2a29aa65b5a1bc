"""
Domain layer - Pure business logic without external dependencies.
"""

from .charges import AddOnCalculator, ChargeSplitter, TestAccountPolicy, compute_add_on_total
from .models import (
    AddOn,
    AddOnPrices,
    AvailabilityRules,
    BookingSelection,
    ChargeBreakdown,
    DateRule,
    HostServices,
    PricingTier,
    WeeklyRule,
)
from .pricing_catalog import PricingCatalog
from .slot_resolver import SlotResolver
from .workflow import BookingStep, BookingWorkflow, HostOffer, PlatformGates

__all__ = [
    "AddOn",
    "AddOnCalculator",
    "AddOnPrices",
    "AvailabilityRules",
    "BookingSelection",
    "BookingStep",
    "BookingWorkflow",
    "ChargeBreakdown",
    "ChargeSplitter",
    "DateRule",
    "HostOffer",
    "HostServices",
    "PlatformGates",
    "PricingCatalog",
    "PricingTier",
    "SlotResolver",
    "TestAccountPolicy",
    "WeeklyRule",
    "compute_add_on_total",
]
