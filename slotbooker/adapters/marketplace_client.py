"""
Marketplace API client for availability rules, pricing tiers and add-on prices.
"""

import asyncio
import logging
from typing import Any, Dict, List, Sequence

import requests

from ..domain.exceptions import ExternalOperationError
from ..domain.models import AddOnPrices, AvailabilityRules, PricingTier
from .payloads import parse_add_on_prices, parse_rules, parse_tier, tier_to_payload

logger = logging.getLogger(__name__)


class MarketplaceClient:
    """
    Client for the marketplace REST API.

    Blocking ``requests`` calls run in a worker thread so the async service
    layer can await them.
    """

    def __init__(self, base_url: str, access_token: str = "", timeout: float = 15.0):
        """
        Initialize the API client.

        Args:
            base_url: Root URL of the marketplace API
            access_token: Optional bearer token
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if access_token:
            self.headers["Authorization"] = f"Bearer {access_token}"

    async def get_rules(self, host_id: str) -> AvailabilityRules:
        """
        Get the availability rules of a host.

        Raises:
            ExternalOperationError: If the API call fails
            ValidationError: If a returned rule is malformed
        """
        data = await asyncio.to_thread(self._request, "GET", f"/api/users/{host_id}/availability")
        return parse_rules(self._as_list(data, "availability"))

    async def get_tiers(self, host_id: str) -> List[PricingTier]:
        """Get every pricing tier of a host, including inactive ones."""
        data = await asyncio.to_thread(
            self._request, "GET", f"/api/pricing/{host_id}", params={"includeInactive": "true"}
        )
        return [parse_tier(row) for row in self._as_list(data, "pricing")]

    async def upsert_tiers(self, host_id: str, tiers: Sequence[PricingTier]) -> None:
        """Upsert a batch of tiers keyed by duration in one request."""
        payload = {"userId": host_id, "tiers": [tier_to_payload(tier) for tier in tiers]}
        await asyncio.to_thread(self._request, "POST", "/api/pricing/batch", json=payload)
        logger.debug("Upserted %d tier(s) for host %s", len(tiers), host_id)

    async def get_add_on_prices(self) -> AddOnPrices:
        data = await asyncio.to_thread(self._request, "GET", "/api/service-pricing")
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            raise ExternalOperationError("Unexpected service pricing response")
        return parse_add_on_prices(data)

    def test_connection(self) -> bool:
        """
        Check that the API answers its health endpoint.

        Raises:
            ExternalOperationError: If the connection test fails
        """
        self._request("GET", "/health")
        return True

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, headers=self.headers, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except requests.exceptions.RequestException as exc:
            raise ExternalOperationError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalOperationError(f"{method} {path} returned invalid JSON: {exc}") from exc

    @staticmethod
    def _as_list(data: Any, what: str) -> List[Dict[str, Any]]:
        """Accept either a bare list or the ``{"success": ..., "data": [...]}`` envelope."""
        if isinstance(data, dict):
            if data.get("success") is False:
                raise ExternalOperationError(data.get("message") or f"Failed to get {what}")
            data = data.get("data")
        if not isinstance(data, list):
            raise ExternalOperationError(f"Unexpected {what} response")
        return data
