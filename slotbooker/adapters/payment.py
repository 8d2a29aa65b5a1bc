"""
Payment and completion collaborators used outside production.
"""

import asyncio
import logging
import uuid
from typing import List

from ..domain.workflow import CompletionEvent, PaymentRequest, PaymentResult

logger = logging.getLogger(__name__)


class SimulatedPaymentGateway:
    """
    Gateway that approves every capture unless told to decline.

    Useful for demos and tests; no money moves.
    """

    def __init__(self, decline_reason: str | None = None, delay_seconds: float = 0.0):
        self.decline_reason = decline_reason
        self.delay_seconds = delay_seconds
        self.requests: List[PaymentRequest] = []

    async def capture(self, request: PaymentRequest) -> PaymentResult:
        self.requests.append(request)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        if self.decline_reason:
            logger.info("Declining simulated payment %s: %s", request.booking_reference, self.decline_reason)
            return PaymentResult(success=False, error=self.decline_reason)

        transaction_id = f"sim_{uuid.uuid4().hex[:12]}"
        logger.info(
            "Captured simulated payment %s: %s %s",
            request.booking_reference, request.amount, request.currency,
        )
        return PaymentResult(success=True, transaction_id=transaction_id)


class RecordingCompletionListener:
    """Keeps completion events in memory and logs them."""

    def __init__(self) -> None:
        self.events: List[CompletionEvent] = []

    async def publish(self, event: CompletionEvent) -> None:
        self.events.append(event)
        logger.info(
            "Booking %s completed: host=%s date=%s time=%s",
            event.booking_reference, event.host_id, event.date, event.time,
        )
