"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .booking_service import AddOnPriceSource, BookingService, PricingSource, RuleSource
from .catalog_service import CatalogService

__all__ = ["AddOnPriceSource", "BookingService", "CatalogService", "PricingSource", "RuleSource"]
