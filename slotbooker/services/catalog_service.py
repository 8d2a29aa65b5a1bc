"""
Host-side pricing catalog edits.

Every edit loads the current tiers, applies the change to a working copy and
writes the changed tiers back as one batch. Nothing is written when the
domain rejects the change, and a failed write leaves the stored catalog as
it was.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, List, Mapping

from ..domain.exceptions import ExternalOperationError, OperationInProgressError
from ..domain.models import AddOn, PricingTier
from ..domain.pricing_catalog import PricingCatalog
from .booking_service import BookingService, PricingSource

logger = logging.getLogger(__name__)


class CatalogService:
    """
    Applies activate/deactivate/add-on edits for a host.

    Only one edit per host may be outstanding; a second submission while the
    first is still being written is rejected rather than queued.
    """

    def __init__(self, pricing_source: PricingSource, booking_service: BookingService) -> None:
        self._pricing_source = pricing_source
        self._booking_service = booking_service
        self._in_flight: set[str] = set()

    def is_busy(self, host_id: str) -> bool:
        return host_id in self._in_flight

    async def get_catalog(self, host_id: str) -> PricingCatalog:
        """Load the catalog; read failures propagate since edits must not start from an empty catalog."""
        tiers = await self._pricing_source.get_tiers(host_id)
        return self._booking_service.new_catalog(tiers)

    async def activate(
        self,
        host_id: str,
        duration: int,
        price: Decimal | int | str | None = None,
        *,
        flags: Mapping[AddOn | str, bool] | None = None,
        is_custom: bool | None = None,
    ) -> PricingTier:
        async with self._exclusive(host_id):
            catalog = await self.get_catalog(host_id)
            tier = catalog.activate(duration, price, flags=flags, is_custom=is_custom)
            await self._write(host_id, [tier])
            logger.info("Host %s activated %s-minute tier at %s", host_id, duration, tier.price)
            return tier

    async def deactivate(self, host_id: str, duration: int) -> None:
        async with self._exclusive(host_id):
            catalog = await self.get_catalog(host_id)
            catalog.deactivate(duration)
            tier = catalog.get(duration)
            if tier is not None:
                await self._write(host_id, [tier])
                logger.info("Host %s deactivated %s-minute tier", host_id, duration)

    async def set_add_on_inclusion(self, host_id: str, service: AddOn | str, included: bool) -> List[PricingTier]:
        """Apply an add-on flag to all active tiers in one write."""
        async with self._exclusive(host_id):
            catalog = await self.get_catalog(host_id)
            changed = catalog.set_add_on_inclusion(service, included)
            if changed:
                await self._write(host_id, changed)
            return changed

    async def _write(self, host_id: str, tiers: List[PricingTier]) -> None:
        try:
            await self._pricing_source.upsert_tiers(host_id, tiers)
        except ExternalOperationError:
            logger.error("Pricing update for host %s failed; no tiers were changed", host_id)
            raise

    @asynccontextmanager
    async def _exclusive(self, host_id: str) -> AsyncIterator[None]:
        if host_id in self._in_flight:
            raise OperationInProgressError(f"A pricing update for host {host_id} is already in progress")
        self._in_flight.add(host_id)
        try:
            yield
        finally:
            self._in_flight.discard(host_id)
