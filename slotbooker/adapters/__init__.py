"""
Adapters layer - External integrations (marketplace API, payment).
"""

from .marketplace_client import MarketplaceClient
from .mock_marketplace_client import MockMarketplaceClient
from .payment import RecordingCompletionListener, SimulatedPaymentGateway

__all__ = [
    "MarketplaceClient",
    "MockMarketplaceClient",
    "RecordingCompletionListener",
    "SimulatedPaymentGateway",
]
