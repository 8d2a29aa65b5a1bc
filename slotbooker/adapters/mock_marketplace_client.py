"""
Mock marketplace client for running without a marketplace API.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..domain.exceptions import ExternalOperationError
from ..domain.models import AddOnPrices, AvailabilityRules, PricingTier
from .payloads import parse_add_on_prices, parse_rules, parse_tier, tier_to_payload

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "mock_marketplace_data.json"


class MockMarketplaceClient:
    """
    Mock client that serves hosts from a JSON fixture.

    Reads come from the fixture loaded at construction; pricing writes are
    kept in memory only.
    """

    def __init__(self, data_file: Path | None = None, data: Dict[str, Any] | None = None):
        """
        Initialize the mock client.

        Args:
            data_file: Fixture path; defaults to mock_marketplace_data.json next to this module
            data: Fixture content given directly (takes precedence over data_file)
        """
        if data is not None:
            self.data = copy.deepcopy(data)
        else:
            self.data = self._load_data(data_file or DEFAULT_DATA_FILE)
        self.data.setdefault("hosts", {})

    @staticmethod
    def _load_data(data_file: Path) -> Dict[str, Any]:
        if not data_file.exists():
            logger.warning("Mock data file %s not found, starting empty", data_file)
            return {}

        with open(data_file, "r", encoding="utf-8") as f:
            return json.load(f)

    def host_ids(self) -> List[str]:
        return sorted(self.data["hosts"])

    def host_name(self, host_id: str) -> str:
        return self._host(host_id).get("name", host_id)

    async def get_rules(self, host_id: str) -> AvailabilityRules:
        return parse_rules(self._host(host_id).get("availability", []))

    async def get_tiers(self, host_id: str) -> List[PricingTier]:
        return [parse_tier(row) for row in self._host(host_id).get("pricing", [])]

    async def upsert_tiers(self, host_id: str, tiers: Sequence[PricingTier]) -> None:
        rows = {int(row["duration"]): row for row in self._host(host_id).get("pricing", [])}
        for tier in tiers:
            rows[tier.duration] = tier_to_payload(tier)
        self._host(host_id)["pricing"] = [rows[duration] for duration in sorted(rows)]

    async def get_add_on_prices(self) -> AddOnPrices:
        return parse_add_on_prices(self.data.get("servicePricing", {}))

    def _host(self, host_id: str) -> Dict[str, Any]:
        try:
            return self.data["hosts"][host_id]
        except KeyError as exc:
            raise ExternalOperationError(f"Unknown host: {host_id}") from exc
