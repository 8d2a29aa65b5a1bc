"""
Booking workflow: the guarded step sequence a client walks through.

HOST_INTRO -> SELECT_DATE -> SELECT_TIME -> SELECT_SERVICES -> PAYMENT -> SUCCESS

Each forward move is gated on the selection being complete for every step
already passed. ``CLOSED`` is the exit reachable from any step.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Protocol

from .charges import AddOnCalculator, ChargeSplitter
from .exceptions import (
    BookingError,
    ConfigurationGatedError,
    ExternalOperationError,
    InvalidTransitionError,
    OperationInProgressError,
    ValidationError,
)
from .models import (
    AddOn,
    AddOnPrices,
    AvailabilityRules,
    BookingSelection,
    ChargeBreakdown,
    HostServices,
    PricingTier,
    format_clock,
    parse_calendar_date,
    parse_clock,
)
from .pricing_catalog import PricingCatalog
from .slot_resolver import SlotResolver

logger = logging.getLogger(__name__)


class BookingStep(str, Enum):
    HOST_INTRO = "host_intro"
    SELECT_DATE = "select_date"
    SELECT_TIME = "select_time"
    SELECT_SERVICES = "select_services"
    PAYMENT = "payment"
    SUCCESS = "success"
    CLOSED = "closed"


STEP_ORDER = (
    BookingStep.HOST_INTRO,
    BookingStep.SELECT_DATE,
    BookingStep.SELECT_TIME,
    BookingStep.SELECT_SERVICES,
    BookingStep.PAYMENT,
    BookingStep.SUCCESS,
)


@dataclass(frozen=True)
class PaymentRequest:
    amount: Decimal
    booking_reference: str
    add_on_selections: FrozenSet[AddOn]
    currency: str


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    transaction_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CompletionEvent:
    """Emitted once per successful booking."""
    booking_reference: str
    host_id: str
    account: str | None
    date: date
    time: time
    duration: int
    add_ons: FrozenSet[AddOn]
    breakdown: ChargeBreakdown
    transaction_id: str | None = None


class PaymentGateway(Protocol):
    """Captures a charge; failures and timeouts both come back as no success."""

    async def capture(self, request: PaymentRequest) -> PaymentResult:
        ...


class CompletionListener(Protocol):
    """Consumes finalized bookings (notification, persistence)."""

    async def publish(self, event: CompletionEvent) -> None:
        ...


@dataclass(frozen=True)
class PlatformGates:
    """Feature switches that restrict what a booking may contain."""
    allow_free_calls: bool = False
    allow_screen_sharing: bool = True
    allow_translation: bool = True
    allow_recording: bool = True
    allow_transcription: bool = True

    def allows(self, add_on: AddOn) -> bool:
        return getattr(self, f"allow_{add_on.value}")


@dataclass
class HostOffer:
    """Everything a workflow reads about one host, fixed for its lifetime."""
    host_id: str
    rules: AvailabilityRules = field(default_factory=AvailabilityRules)
    catalog: PricingCatalog = field(default_factory=PricingCatalog)
    services: HostServices = field(default_factory=HostServices)
    prices: AddOnPrices = field(default_factory=AddOnPrices)


class BookingWorkflow:
    """
    State machine for one booking attempt.

    The workflow exclusively owns its BookingSelection. Reopening always
    starts over at HOST_INTRO; nothing from a previous attempt is resumed.
    """

    def __init__(
        self,
        offer: HostOffer,
        *,
        calculator: AddOnCalculator,
        splitter: ChargeSplitter,
        resolver: SlotResolver | None = None,
        gates: PlatformGates | None = None,
        account: str | None = None,
        today: date | None = None,
    ):
        self.offer = offer
        self.calculator = calculator
        self.splitter = splitter
        self.resolver = resolver or SlotResolver()
        self.gates = gates or PlatformGates()
        self.account = account
        self.today = today

        self.step = BookingStep.CLOSED
        self.selection: BookingSelection | None = None
        self.last_error: str | None = None
        self.completed_event: CompletionEvent | None = None

        self._generation = 0
        self._payment_in_flight = False
        self._payment_confirmed = False
        self._completion_emitted = False

        self.open()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Start a fresh attempt at HOST_INTRO with add-ons pre-selected from host defaults."""
        self._generation += 1
        self.step = BookingStep.HOST_INTRO
        self.selection = BookingSelection(selected_add_ons=set(self.default_add_ons()))
        self.last_error = None
        self.completed_event = None
        self._payment_in_flight = False
        self._payment_confirmed = False
        self._completion_emitted = False

    def close(self) -> None:
        """Dialog closed: drop the selection; late results are discarded."""
        self._generation += 1
        self.step = BookingStep.CLOSED
        self.selection = None
        self._payment_in_flight = False

    @property
    def is_closed(self) -> bool:
        return self.step is BookingStep.CLOSED

    @property
    def is_busy(self) -> bool:
        """True while a payment capture is outstanding; the pay action must be disabled."""
        return self._payment_in_flight

    def default_add_ons(self) -> FrozenSet[AddOn]:
        return frozenset(
            add_on for add_on in self.offer.services.enabled() if self.gates.allows(add_on)
        )

    # ------------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------------

    def available_slots(self) -> List[str]:
        selection = self._require_selection()
        if selection.date is None:
            return []
        return self.resolver.resolve_for(selection.date, self.offer.rules)

    def available_tiers(self) -> List[PricingTier]:
        return [
            tier for tier in self.offer.catalog.active_tiers()
            if self.gates.allow_free_calls or not self.offer.catalog.is_free_duration(tier.duration)
        ]

    def select_date(self, value: date | str | None) -> None:
        """
        Choose (or clear with None) the booking date.

        A previously chosen time that the new date does not offer is cleared.
        """
        selection = self._require_selection()
        if value is None:
            selection.date = None
            return

        chosen = parse_calendar_date(value)
        if self.today is not None and chosen < self.today:
            raise self._fail(ValidationError(f"{chosen} is in the past"))
        if not self.resolver.is_available_for(chosen, self.offer.rules):
            raise self._fail(ValidationError(f"The host has no availability on {chosen}"))

        selection.date = chosen
        if selection.time is not None and format_clock(selection.time) not in self.available_slots():
            selection.time = None
        self.last_error = None

    def select_time(self, value: time | str) -> None:
        selection = self._require_selection()
        if selection.date is None:
            raise self._fail(ValidationError("Select a date before choosing a time"))

        chosen = parse_clock(value)
        if format_clock(chosen) not in self.available_slots():
            raise self._fail(
                ValidationError(f"{format_clock(chosen)} is not an available slot on {selection.date}")
            )

        selection.time = chosen
        self.last_error = None

    def select_tier(self, duration: int) -> PricingTier:
        selection = self._require_selection()
        tier = self.offer.catalog.get(duration)
        if tier is None or not tier.is_active:
            raise self._fail(ValidationError(f"No active {duration}-minute tier is offered"))
        if self.offer.catalog.is_free_duration(duration) and not self.gates.allow_free_calls:
            raise self._fail(ConfigurationGatedError("Free calls are disabled on this platform"))

        selection.tier = tier
        self.last_error = None
        return tier

    def set_add_on(self, add_on: AddOn | str, selected: bool = True) -> None:
        selection = self._require_selection()
        choice = AddOn.parse(add_on)

        if not selected:
            selection.selected_add_ons.discard(choice)
            return

        if not self.gates.allows(choice):
            raise self._fail(ConfigurationGatedError(f"{choice.value} is disabled on this platform"))
        if not self.offer.services.is_enabled(choice):
            raise self._fail(ConfigurationGatedError(f"The host does not offer {choice.value}"))

        selection.selected_add_ons.add(choice)
        self.last_error = None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance(self) -> BookingStep:
        """
        Move to the next step if its guard holds.

        Raises:
            ValidationError: If a required selection is missing (step unchanged)
            InvalidTransitionError: From SUCCESS or CLOSED
        """
        if self.step in (BookingStep.SUCCESS, BookingStep.CLOSED):
            raise self._fail(InvalidTransitionError(f"Cannot advance from {self.step.value}"))

        missing = self._missing_for(self.step)
        if missing:
            raise self._fail(ValidationError(f"Cannot continue: missing {', '.join(missing)}"))

        previous = self.step
        self.step = STEP_ORDER[STEP_ORDER.index(self.step) + 1]
        self.last_error = None
        logger.debug("Booking for %s: %s -> %s", self.offer.host_id, previous.value, self.step.value)
        return self.step

    def retreat(self) -> BookingStep:
        """Move back one step; no-op at HOST_INTRO and SUCCESS."""
        if self.step is BookingStep.CLOSED:
            raise self._fail(InvalidTransitionError("The booking has been closed"))
        if self._payment_in_flight:
            raise self._fail(OperationInProgressError("A payment is being processed"))
        if self.step in (BookingStep.HOST_INTRO, BookingStep.SUCCESS):
            return self.step

        self.step = STEP_ORDER[STEP_ORDER.index(self.step) - 1]
        self.last_error = None
        return self.step

    def cancel(self) -> BookingStep:
        """
        Cancel the current step.

        At PAYMENT this steps back to SELECT_SERVICES keeping all selections;
        anywhere else the whole attempt is discarded.
        """
        if self.step in (BookingStep.SUCCESS, BookingStep.CLOSED):
            raise self._fail(InvalidTransitionError(f"Cannot cancel from {self.step.value}"))

        if self.step is BookingStep.PAYMENT:
            if self._payment_in_flight:
                raise self._fail(OperationInProgressError("A payment is being processed"))
            self.step = BookingStep.SELECT_SERVICES
            return self.step

        logger.info("Booking for %s cancelled at %s", self.offer.host_id, self.step.value)
        self.close()
        return self.step

    def _missing_for(self, step: BookingStep) -> List[str]:
        selection = self._require_selection()
        missing: List[str] = []

        if step in (BookingStep.SELECT_DATE, BookingStep.SELECT_TIME,
                    BookingStep.SELECT_SERVICES, BookingStep.PAYMENT):
            if selection.date is None:
                missing.append("date")
        if step in (BookingStep.SELECT_TIME, BookingStep.SELECT_SERVICES, BookingStep.PAYMENT):
            if selection.time is None:
                missing.append("time")
            if selection.tier is None:
                missing.append("duration")
        if step is BookingStep.PAYMENT and not self._payment_confirmed:
            missing.append("successful payment")

        return missing

    # ------------------------------------------------------------------
    # Pricing and payment
    # ------------------------------------------------------------------

    def quote(self) -> ChargeBreakdown:
        selection = self._require_selection()
        if selection.tier is None:
            raise self._fail(ValidationError("Select a duration before pricing the booking"))

        price = self.calculator.quote(
            selection.tier, selection.selected_add_ons, account=self.account, host=self.offer.host_id
        )
        return self.splitter.split_quote(price)

    async def pay(self, gateway: PaymentGateway, listener: CompletionListener) -> CompletionEvent | None:
        """
        Capture payment and, on success, finish the booking.

        Returns the completion event, or None when the workflow was closed or
        reopened while the capture was outstanding (the late result is dropped).

        Raises:
            OperationInProgressError: If a capture is already outstanding
            ExternalOperationError: If the capture failed; the step stays PAYMENT
        """
        if self.step is not BookingStep.PAYMENT:
            raise self._fail(InvalidTransitionError(f"Payment is not possible at {self.step.value}"))
        if self._payment_in_flight:
            raise self._fail(OperationInProgressError("A payment is already being processed"))

        selection = self._require_selection()
        breakdown = self.quote()
        reference = uuid.uuid4().hex
        request = PaymentRequest(
            amount=breakdown.rounded().total,
            booking_reference=reference,
            add_on_selections=frozenset(selection.selected_add_ons),
            currency=breakdown.currency,
        )

        generation = self._generation
        self._payment_in_flight = True
        try:
            result = await gateway.capture(request)
        except (BookingError, asyncio.TimeoutError) as exc:
            result = PaymentResult(success=False, error=str(exc))
        except Exception as exc:
            logger.exception("Payment gateway raised for booking %s", reference)
            result = PaymentResult(success=False, error=f"Payment gateway error: {exc}")
        finally:
            if generation == self._generation:
                self._payment_in_flight = False

        if generation != self._generation:
            logger.info("Discarding payment result for closed booking %s", reference)
            return None

        if not result.success:
            message = result.error or "Payment was not completed"
            logger.warning("Payment for booking %s failed: %s", reference, message)
            raise self._fail(ExternalOperationError(message))

        self._payment_confirmed = True
        self.advance()
        return await self._complete(listener, reference, breakdown, result.transaction_id)

    async def _complete(
        self,
        listener: CompletionListener,
        reference: str,
        breakdown: ChargeBreakdown,
        transaction_id: str | None,
    ) -> CompletionEvent:
        if self._completion_emitted and self.completed_event is not None:
            return self.completed_event

        selection = self._require_selection()
        event = CompletionEvent(
            booking_reference=reference,
            host_id=self.offer.host_id,
            account=self.account,
            date=selection.date,
            time=selection.time,
            duration=selection.tier.duration,
            add_ons=frozenset(selection.selected_add_ons),
            breakdown=breakdown,
            transaction_id=transaction_id,
        )
        self._completion_emitted = True
        self.completed_event = event
        self.selection = None

        await listener.publish(event)
        logger.info("Booking %s confirmed for host %s", reference, self.offer.host_id)
        return event

    # ------------------------------------------------------------------

    def summary(self) -> Dict[str, object]:
        """Plain view of the current selection for rendering."""
        selection = self.selection
        if selection is None:
            return {"step": self.step.value}
        return {
            "step": self.step.value,
            "date": selection.date.isoformat() if selection.date else None,
            "time": selection.time_label(),
            "duration": selection.tier.duration if selection.tier else None,
            "add_ons": sorted(add_on.value for add_on in selection.selected_add_ons),
        }

    def _require_selection(self) -> BookingSelection:
        if self.selection is None:
            raise InvalidTransitionError("The booking has been closed")
        return self.selection

    def _fail(self, error: BookingError) -> BookingError:
        self.last_error = str(error)
        return error
