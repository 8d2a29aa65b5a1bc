"""
Tests for the booking workflow state machine.
"""

import asyncio
import logging
from datetime import date, time
from decimal import Decimal

import pytest

from slotbooker.adapters.payment import RecordingCompletionListener, SimulatedPaymentGateway
from slotbooker.domain.charges import AddOnCalculator, ChargeSplitter, TestAccountPolicy
from slotbooker.domain.exceptions import (
    ConfigurationGatedError,
    ExternalOperationError,
    InvalidTransitionError,
    OperationInProgressError,
    ValidationError,
)
from slotbooker.domain.models import (
    AddOn,
    AddOnPrices,
    AvailabilityRules,
    DateRule,
    HostServices,
    PricingTier,
    WeeklyRule,
)
from slotbooker.domain.pricing_catalog import PricingCatalog
from slotbooker.domain.workflow import (
    BookingStep,
    BookingWorkflow,
    HostOffer,
    PaymentResult,
    PlatformGates,
)

MONDAY = date(2024, 11, 25)
TODAY = date(2024, 11, 20)


def _build_workflow(gates=None, account=None, test_accounts=None) -> BookingWorkflow:
    rules = AvailabilityRules.of(
        [WeeklyRule.from_strings(1, "09:00", "11:00")],
        [DateRule.from_strings("2024-11-27", "14:00", "15:00")],
    )
    catalog = PricingCatalog([
        PricingTier(duration=0, price=Decimal("0")),
        PricingTier(duration=30, price=Decimal("20"), includes_screen_sharing=True),
        PricingTier(duration=60, price=Decimal("35"), includes_recording=True),
    ])
    prices = AddOnPrices()
    offer = HostOffer(
        host_id="ana",
        rules=rules,
        catalog=catalog,
        services=HostServices.from_tiers(catalog.active_tiers(), prices),
        prices=prices,
    )
    return BookingWorkflow(
        offer,
        calculator=AddOnCalculator(prices, test_accounts=test_accounts),
        splitter=ChargeSplitter(),
        gates=gates,
        account=account,
        today=TODAY,
    )


def _walk_to_payment(workflow: BookingWorkflow) -> None:
    workflow.advance()
    workflow.select_date(MONDAY)
    workflow.advance()
    workflow.select_time("09:30")
    workflow.select_tier(60)
    workflow.advance()
    workflow.advance()
    assert workflow.step is BookingStep.PAYMENT


class TestOpen:
    """Tests for opening a workflow."""

    def test_starts_at_host_intro_with_defaults(self):
        """Add-ons offered by the host are pre-selected."""
        workflow = _build_workflow()

        assert workflow.step is BookingStep.HOST_INTRO
        assert workflow.selection.selected_add_ons == {AddOn.SCREEN_SHARING, AddOn.RECORDING}
        assert workflow.selection.date is None

    def test_gated_add_ons_not_preselected(self):
        workflow = _build_workflow(gates=PlatformGates(allow_recording=False))

        assert workflow.selection.selected_add_ons == {AddOn.SCREEN_SHARING}

    def test_reopen_starts_over(self):
        """Reopening discards the previous attempt and seeds the defaults again."""
        workflow = _build_workflow()
        workflow.advance()
        workflow.select_date(MONDAY)
        workflow.set_add_on(AddOn.RECORDING, False)

        workflow.close()
        assert workflow.is_closed
        assert workflow.selection is None

        workflow.open()

        assert workflow.step is BookingStep.HOST_INTRO
        assert workflow.selection.date is None
        assert workflow.selection.selected_add_ons == {AddOn.SCREEN_SHARING, AddOn.RECORDING}


class TestGuards:
    """Tests for forward transitions."""

    def test_advance_requires_date(self):
        workflow = _build_workflow()
        workflow.advance()

        with pytest.raises(ValidationError, match="date"):
            workflow.advance()

        assert workflow.step is BookingStep.SELECT_DATE
        assert "date" in workflow.last_error

    def test_advance_requires_time_and_duration(self):
        workflow = _build_workflow()
        workflow.advance()
        workflow.select_date(MONDAY)
        workflow.advance()

        with pytest.raises(ValidationError, match="time"):
            workflow.advance()

        workflow.select_time("10:00")
        with pytest.raises(ValidationError, match="duration"):
            workflow.advance()

        workflow.select_tier(30)
        assert workflow.advance() is BookingStep.SELECT_SERVICES

    def test_cleared_date_blocks_later_steps(self):
        """Guards are cumulative: a date cleared later still blocks advancing."""
        workflow = _build_workflow()
        workflow.advance()
        workflow.select_date(MONDAY)
        workflow.advance()
        workflow.select_time("10:00")
        workflow.select_tier(30)
        workflow.select_date(None)

        with pytest.raises(ValidationError, match="date"):
            workflow.advance()

        assert workflow.step is BookingStep.SELECT_TIME

    def test_select_time_step_needs_date_then_advances(self):
        """Advancing from SELECT_TIME fails without a date and succeeds once it is given."""
        workflow = _build_workflow()
        workflow.advance()
        workflow.select_date(MONDAY)
        workflow.advance()
        workflow.select_date(None)
        workflow.select_tier(60)

        with pytest.raises(ValidationError, match="date"):
            workflow.advance()
        assert workflow.step is BookingStep.SELECT_TIME

        workflow.select_date(MONDAY)
        workflow.select_time("09:00")

        assert workflow.advance() is BookingStep.SELECT_SERVICES

    def test_payment_step_needs_successful_payment(self):
        workflow = _build_workflow()
        _walk_to_payment(workflow)

        with pytest.raises(ValidationError):
            workflow.advance()

        assert workflow.step is BookingStep.PAYMENT


class TestSelections:
    """Tests for date, time, duration and add-on choices."""

    def test_past_date_rejected(self):
        workflow = _build_workflow()

        with pytest.raises(ValidationError, match="past"):
            workflow.select_date(date(2024, 11, 18))

    def test_unavailable_date_rejected(self):
        workflow = _build_workflow()

        with pytest.raises(ValidationError):
            workflow.select_date("2024-11-26")

    def test_time_without_date(self):
        workflow = _build_workflow()

        with pytest.raises(ValidationError):
            workflow.select_time("09:00")

    def test_time_must_be_a_slot(self):
        workflow = _build_workflow()
        workflow.select_date(MONDAY)

        assert workflow.available_slots() == ["09:00", "09:30", "10:00", "10:30"]
        with pytest.raises(ValidationError):
            workflow.select_time("11:00")

    def test_changing_date_clears_unavailable_time(self):
        workflow = _build_workflow()
        workflow.select_date(MONDAY)
        workflow.select_time("09:30")

        workflow.select_date("2024-11-27")

        assert workflow.selection.time is None
        assert workflow.available_slots() == ["14:00", "14:30"]

    def test_free_tier_hidden_when_gated(self):
        workflow = _build_workflow()

        assert [tier.duration for tier in workflow.available_tiers()] == [30, 60]
        with pytest.raises(ConfigurationGatedError):
            workflow.select_tier(0)

    def test_free_tier_allowed_when_enabled(self):
        workflow = _build_workflow(gates=PlatformGates(allow_free_calls=True))

        assert [tier.duration for tier in workflow.available_tiers()] == [0, 30, 60]
        assert workflow.select_tier(0).price == Decimal("0")

    def test_inactive_or_unknown_tier(self):
        workflow = _build_workflow()

        with pytest.raises(ValidationError):
            workflow.select_tier(90)

    def test_add_on_gated_by_platform(self):
        workflow = _build_workflow(gates=PlatformGates(allow_recording=False))

        with pytest.raises(ConfigurationGatedError):
            workflow.set_add_on(AddOn.RECORDING)

    def test_add_on_not_offered_by_host(self):
        workflow = _build_workflow()

        with pytest.raises(ConfigurationGatedError):
            workflow.set_add_on("translation")

        assert AddOn.TRANSLATION not in workflow.selection.selected_add_ons


class TestBackAndCancel:
    """Tests for retreat and cancel."""

    def test_retreat_keeps_selection(self):
        workflow = _build_workflow()
        workflow.advance()
        workflow.select_date(MONDAY)
        workflow.advance()

        assert workflow.retreat() is BookingStep.SELECT_DATE
        assert workflow.selection.date == MONDAY

    def test_retreat_at_start_is_noop(self):
        workflow = _build_workflow()

        assert workflow.retreat() is BookingStep.HOST_INTRO

    def test_cancel_at_payment_returns_to_services(self):
        """Cancelling payment goes back one step and keeps the selection."""
        workflow = _build_workflow()
        _walk_to_payment(workflow)

        assert workflow.cancel() is BookingStep.SELECT_SERVICES
        assert workflow.selection.time == time(9, 30)
        assert workflow.selection.tier.duration == 60

    def test_cancel_elsewhere_closes(self):
        workflow = _build_workflow()
        workflow.advance()
        workflow.select_date(MONDAY)

        assert workflow.cancel() is BookingStep.CLOSED
        assert workflow.selection is None

        with pytest.raises(InvalidTransitionError):
            workflow.advance()


class TestPayment:
    """Tests for paying and completing a booking."""

    def test_quote_includes_selected_add_ons(self):
        workflow = _build_workflow()
        _walk_to_payment(workflow)

        breakdown = workflow.quote()

        # 35 base + screen sharing 5 + recording 8
        assert breakdown.total == Decimal("48")

    def test_success_emits_one_event(self):
        workflow = _build_workflow()
        _walk_to_payment(workflow)
        gateway = SimulatedPaymentGateway()
        listener = RecordingCompletionListener()

        event = asyncio.run(workflow.pay(gateway, listener))

        assert workflow.step is BookingStep.SUCCESS
        assert listener.events == [event]
        assert event.host_id == "ana"
        assert event.date == MONDAY
        assert event.time == time(9, 30)
        assert event.duration == 60
        assert gateway.requests[0].amount == Decimal("48.00")
        assert gateway.requests[0].add_on_selections == frozenset({AddOn.SCREEN_SHARING, AddOn.RECORDING})
        assert workflow.selection is None

        with pytest.raises(InvalidTransitionError):
            asyncio.run(workflow.pay(gateway, listener))
        with pytest.raises(InvalidTransitionError):
            workflow.cancel()
        assert len(listener.events) == 1

    def test_failure_stays_on_payment(self):
        """A declined payment keeps the step and allows a retry."""
        workflow = _build_workflow()
        _walk_to_payment(workflow)
        listener = RecordingCompletionListener()

        with pytest.raises(ExternalOperationError):
            asyncio.run(workflow.pay(SimulatedPaymentGateway(decline_reason="Card declined"), listener))

        assert workflow.step is BookingStep.PAYMENT
        assert workflow.last_error == "Card declined"
        assert not workflow.is_busy
        assert listener.events == []

        asyncio.run(workflow.pay(SimulatedPaymentGateway(), listener))

        assert workflow.step is BookingStep.SUCCESS
        assert len(listener.events) == 1

    def test_timeout_is_a_failure(self):
        class TimingOutGateway:
            async def capture(self, request):
                raise asyncio.TimeoutError()

        workflow = _build_workflow()
        _walk_to_payment(workflow)

        with pytest.raises(ExternalOperationError):
            asyncio.run(workflow.pay(TimingOutGateway(), RecordingCompletionListener()))

        assert workflow.step is BookingStep.PAYMENT

    def test_unexpected_gateway_error_is_a_failure(self, caplog):
        """Any exception from the gateway keeps PAYMENT and is reported like a decline."""
        class BrokenGateway:
            async def capture(self, request):
                raise RuntimeError("connection reset")

        workflow = _build_workflow()
        _walk_to_payment(workflow)

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ExternalOperationError, match="connection reset"):
                asyncio.run(workflow.pay(BrokenGateway(), RecordingCompletionListener()))

        assert workflow.step is BookingStep.PAYMENT
        assert "connection reset" in workflow.last_error
        assert not workflow.is_busy
        assert "Payment gateway raised" in caplog.text

    def test_result_after_close_is_discarded(self):
        """A capture finishing after the dialog closed changes nothing."""
        workflow = _build_workflow()
        _walk_to_payment(workflow)
        listener = RecordingCompletionListener()

        class ClosingGateway:
            async def capture(self, request):
                workflow.close()
                return PaymentResult(success=True, transaction_id="late")

        result = asyncio.run(workflow.pay(ClosingGateway(), listener))

        assert result is None
        assert workflow.step is BookingStep.CLOSED
        assert listener.events == []

    def test_result_after_reopen_is_discarded(self):
        workflow = _build_workflow()
        _walk_to_payment(workflow)
        listener = RecordingCompletionListener()

        class ReopeningGateway:
            async def capture(self, request):
                workflow.close()
                workflow.open()
                return PaymentResult(success=True, transaction_id="late")

        assert asyncio.run(workflow.pay(ReopeningGateway(), listener)) is None
        assert workflow.step is BookingStep.HOST_INTRO
        assert listener.events == []

    def test_second_pay_while_in_flight(self):
        """Pay and back are refused while a capture is outstanding."""
        workflow = _build_workflow()
        _walk_to_payment(workflow)
        listener = RecordingCompletionListener()
        seen = {}

        class ReentrantGateway:
            async def capture(self, request):
                seen["busy"] = workflow.is_busy
                with pytest.raises(OperationInProgressError):
                    await workflow.pay(SimulatedPaymentGateway(), listener)
                with pytest.raises(OperationInProgressError):
                    workflow.retreat()
                with pytest.raises(OperationInProgressError):
                    workflow.cancel()
                return PaymentResult(success=True, transaction_id="tx-1")

        event = asyncio.run(workflow.pay(ReentrantGateway(), listener))

        assert seen["busy"] is True
        assert event.transaction_id == "tx-1"
        assert listener.events == [event]

    def test_test_account_pays_nothing(self):
        workflow = _build_workflow(
            account="qa@example.com",
            test_accounts=TestAccountPolicy.of(["qa@example.com"]),
        )
        _walk_to_payment(workflow)
        gateway = SimulatedPaymentGateway()

        event = asyncio.run(workflow.pay(gateway, RecordingCompletionListener()))

        assert event.breakdown.total == Decimal("0")
        assert gateway.requests[0].amount == Decimal("0.00")

    def test_test_host_makes_booking_free(self):
        """A booking with a test host is waived even for a regular client."""
        workflow = _build_workflow(
            account="client@example.com",
            test_accounts=TestAccountPolicy.of(["ana"]),
        )
        _walk_to_payment(workflow)

        assert workflow.quote().total == Decimal("0")

    def test_pay_before_payment_step(self):
        workflow = _build_workflow()

        with pytest.raises(InvalidTransitionError):
            asyncio.run(workflow.pay(SimulatedPaymentGateway(), RecordingCompletionListener()))
