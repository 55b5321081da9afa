"""
Cancellation rules.

Who may cancel, where the ride goes afterwards and who pays whom are decided
here, as a pure function of the ride status and the cancelling party, so the
controller only has to carry out the resulting plan.

=============  ========  ==============================================
Status         Party     Outcome
=============  ========  ==============================================
requested      parent    cancelled, no penalty
scheduled      parent    cancelled, no penalty
scheduled      driver    re-opened as a pending request, driver fined
in_progress    either    cancelled, canceller pays the counterparty
=============  ========  ==============================================

In-progress cancellations require a reason.  Which parties pay on an
in-progress cancellation is governed by ``PenaltyPolicy``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .entities import ensure_transition
from .enums import CancellationOutcome, PenaltyPolicy, RideStatus, UserType
from .errors import ValidationFailed
from .pricing import PricingEngine

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CancellationPlan:
    outcome: CancellationOutcome
    penalty: Decimal = ZERO
    payer_id: Optional[str] = None
    # None while a penalty is set means the platform keeps it.
    payee_id: Optional[str] = None

    @property
    def fine_applied(self) -> bool:
        return self.penalty > ZERO


def penalised_parties(policy: PenaltyPolicy) -> set[UserType]:
    if policy == PenaltyPolicy.DRIVER_ONLY:
        return {UserType.DRIVER}
    if policy == PenaltyPolicy.PARENT_ONLY:
        return {UserType.PARENT}
    return {UserType.DRIVER, UserType.PARENT}


def plan_cancellation(
    *,
    status: RideStatus,
    canceller_type: UserType,
    canceller_id: str,
    counterparty_id: Optional[str],
    fare: Optional[Decimal],
    reason: Optional[str],
    pricing: PricingEngine,
    policy: PenaltyPolicy = PenaltyPolicy.SYMMETRIC,
) -> CancellationPlan:
    """Return what cancelling a ride in *status* by *canceller_type* does.

    Raises ``InvalidStatus`` for terminal rides and ``ValidationFailed`` when
    an in-progress cancellation has no reason.
    """
    if status == RideStatus.SCHEDULED and canceller_type == UserType.DRIVER:
        ensure_transition(status, RideStatus.REQUESTED)
        return CancellationPlan(
            outcome=CancellationOutcome.REOPENED,
            penalty=pricing.cancellation_penalty(fare or ZERO),
            payer_id=canceller_id,
        )

    ensure_transition(status, RideStatus.CANCELLED)

    if status != RideStatus.IN_PROGRESS:
        return CancellationPlan(outcome=CancellationOutcome.CANCELLED)

    if not (reason or "").strip():
        raise ValidationFailed(
            "A cancellation reason is required once the ride is in progress."
        )
    if canceller_type not in penalised_parties(policy):
        return CancellationPlan(outcome=CancellationOutcome.CANCELLED)
    return CancellationPlan(
        outcome=CancellationOutcome.CANCELLED,
        penalty=pricing.cancellation_penalty(fare or ZERO),
        payer_id=canceller_id,
        payee_id=counterparty_id,
    )
