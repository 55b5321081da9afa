"""Unit tests for ride status transitions and cancellation plans."""

from decimal import Decimal

import pytest

from ride2school.domain.cancellation import penalised_parties, plan_cancellation
from ride2school.domain.entities import ensure_transition
from ride2school.domain.enums import (
    CancellationOutcome,
    PenaltyPolicy,
    RideStatus,
    UserType,
)
from ride2school.domain.errors import InvalidStatus, ValidationFailed
from ride2school.domain.pricing import PricingEngine


class TestRideStateMachine:
    # ── Valid transitions ─────────────────────────────────────────

    def test_requested_to_scheduled(self):
        ensure_transition(RideStatus.REQUESTED, RideStatus.SCHEDULED)

    def test_requested_to_cancelled(self):
        ensure_transition(RideStatus.REQUESTED, RideStatus.CANCELLED)

    def test_scheduled_to_in_progress(self):
        ensure_transition(RideStatus.SCHEDULED, RideStatus.IN_PROGRESS)

    def test_scheduled_back_to_requested(self):
        """A driver cancellation re-opens the request."""
        ensure_transition(RideStatus.SCHEDULED, RideStatus.REQUESTED)

    def test_scheduled_to_completed(self):
        ensure_transition(RideStatus.SCHEDULED, RideStatus.COMPLETED)

    def test_in_progress_to_completed(self):
        ensure_transition(RideStatus.IN_PROGRESS, RideStatus.COMPLETED)

    def test_in_progress_to_cancelled(self):
        ensure_transition(RideStatus.IN_PROGRESS, RideStatus.CANCELLED)

    # ── Invalid transitions ───────────────────────────────────────

    def test_requested_to_in_progress_fails(self):
        with pytest.raises(InvalidStatus):
            ensure_transition(RideStatus.REQUESTED, RideStatus.IN_PROGRESS)

    def test_in_progress_back_to_scheduled_fails(self):
        with pytest.raises(InvalidStatus):
            ensure_transition(RideStatus.IN_PROGRESS, RideStatus.SCHEDULED)

    @pytest.mark.parametrize("terminal", [RideStatus.COMPLETED, RideStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        for target in RideStatus:
            with pytest.raises(InvalidStatus):
                ensure_transition(terminal, target)

    def test_invalid_status_carries_current_status(self):
        with pytest.raises(InvalidStatus) as exc:
            ensure_transition(RideStatus.COMPLETED, RideStatus.CANCELLED)
        assert exc.value.current_status == "completed"
        assert exc.value.to_dict()["current_status"] == "completed"
        assert exc.value.code == "INVALID_STATUS"


def _plan(status, canceller, *, reason=None, policy=PenaltyPolicy.SYMMETRIC, fare="200.00"):
    return plan_cancellation(
        status=status,
        canceller_type=canceller,
        canceller_id="canceller",
        counterparty_id="counterparty",
        fare=Decimal(fare),
        reason=reason,
        pricing=PricingEngine(),
        policy=policy,
    )


class TestCancellationPlan:
    def test_parent_cancels_request_without_penalty(self):
        plan = _plan(RideStatus.REQUESTED, UserType.PARENT)
        assert plan.outcome == CancellationOutcome.CANCELLED
        assert not plan.fine_applied

    def test_parent_cancels_scheduled_without_penalty(self):
        plan = _plan(RideStatus.SCHEDULED, UserType.PARENT)
        assert plan.outcome == CancellationOutcome.CANCELLED
        assert plan.penalty == Decimal("0.00")
        assert plan.payer_id is None

    def test_driver_cancels_scheduled_reopens_with_fine(self):
        plan = _plan(RideStatus.SCHEDULED, UserType.DRIVER, fare="120.00")
        assert plan.outcome == CancellationOutcome.REOPENED
        assert plan.penalty == Decimal("12.00")
        assert plan.payer_id == "canceller"
        assert plan.payee_id is None

    def test_in_progress_penalty_goes_to_counterparty(self):
        plan = _plan(RideStatus.IN_PROGRESS, UserType.DRIVER, reason="car trouble")
        assert plan.outcome == CancellationOutcome.CANCELLED
        assert plan.penalty == Decimal("20.00")
        assert plan.payer_id == "canceller"
        assert plan.payee_id == "counterparty"

    def test_in_progress_parent_pays_under_symmetric_policy(self):
        plan = _plan(RideStatus.IN_PROGRESS, UserType.PARENT, reason="child is sick")
        assert plan.fine_applied
        assert plan.payee_id == "counterparty"

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_in_progress_requires_reason(self, reason):
        with pytest.raises(ValidationFailed):
            _plan(RideStatus.IN_PROGRESS, UserType.PARENT, reason=reason)

    def test_driver_only_policy_spares_parent(self):
        plan = _plan(
            RideStatus.IN_PROGRESS,
            UserType.PARENT,
            reason="plans changed",
            policy=PenaltyPolicy.DRIVER_ONLY,
        )
        assert plan.outcome == CancellationOutcome.CANCELLED
        assert not plan.fine_applied

    def test_parent_only_policy_spares_driver(self):
        plan = _plan(
            RideStatus.IN_PROGRESS,
            UserType.DRIVER,
            reason="flat tyre",
            policy=PenaltyPolicy.PARENT_ONLY,
        )
        assert not plan.fine_applied

    @pytest.mark.parametrize("terminal", [RideStatus.COMPLETED, RideStatus.CANCELLED])
    @pytest.mark.parametrize("canceller", [UserType.PARENT, UserType.DRIVER])
    def test_terminal_rides_cannot_be_cancelled(self, terminal, canceller):
        with pytest.raises(InvalidStatus):
            _plan(terminal, canceller, reason="too late")

    def test_penalised_parties(self):
        assert penalised_parties(PenaltyPolicy.SYMMETRIC) == {
            UserType.DRIVER,
            UserType.PARENT,
        }
        assert penalised_parties(PenaltyPolicy.DRIVER_ONLY) == {UserType.DRIVER}
