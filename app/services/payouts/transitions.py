"""Explicit payment state transitions and their balance cascades.

A transition is planned first and applied second. Planning validates the move
against ``VALID_TRANSITIONS`` and lists every balance mutation it implies;
applying writes those changes to the session without committing. Nothing
cascades implicitly from attribute assignment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.models.payout import (
    Balance,
    BalanceState,
    FailureReason,
    Payment,
    PaymentState,
)
from app.services.payouts.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    PaymentState.created: {PaymentState.processing, PaymentState.failed},
    PaymentState.processing: {
        PaymentState.unclaimed,
        PaymentState.completed,
        PaymentState.failed,
        PaymentState.reversed,
        PaymentState.returned,
    },
    PaymentState.unclaimed: {PaymentState.completed, PaymentState.returned},
    PaymentState.completed: set(),
    PaymentState.failed: set(),
    PaymentState.reversed: set(),
    PaymentState.returned: set(),
}

# Unclaimed money is in limbo: balances stay processing.
BALANCE_CASCADE = {
    PaymentState.completed: BalanceState.paid,
    PaymentState.failed: BalanceState.unpaid,
    PaymentState.reversed: BalanceState.unpaid,
    PaymentState.returned: BalanceState.unpaid,
}


@dataclass(frozen=True)
class BalanceMutation:
    balance_id: int
    from_state: BalanceState
    to_state: BalanceState


@dataclass(frozen=True)
class Transition:
    payment_id: int
    from_state: PaymentState
    to_state: PaymentState
    failure_reason: FailureReason | None = None
    balance_mutations: tuple[BalanceMutation, ...] = field(default_factory=tuple)


def can_transition(from_state: PaymentState, to_state: PaymentState) -> bool:
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def plan_transition(
    payment: Payment,
    to_state: PaymentState,
    failure_reason: FailureReason | None = None,
) -> Transition:
    if not can_transition(payment.state, to_state):
        raise InvalidTransitionError(
            f"Illegal payment transition: {payment.state.value} -> {to_state.value}",
            details={"payment_id": payment.id},
        )
    target = BALANCE_CASCADE.get(to_state)
    mutations: tuple[BalanceMutation, ...] = ()
    if target is not None:
        mutations = tuple(
            BalanceMutation(balance.id, balance.state, target)
            for balance in payment.balances
            if balance.state == BalanceState.processing
        )
    return Transition(
        payment_id=payment.id,
        from_state=payment.state,
        to_state=to_state,
        failure_reason=failure_reason if to_state == PaymentState.failed else None,
        balance_mutations=mutations,
    )


def apply_transition(db: Session, payment: Payment, transition: Transition) -> Payment:
    if payment.id != transition.payment_id or payment.state != transition.from_state:
        raise InvalidTransitionError(
            "Payment changed since the transition was planned",
            details={"payment_id": payment.id},
        )
    balances = {balance.id: balance for balance in payment.balances}
    for mutation in transition.balance_mutations:
        balance: Balance | None = balances.get(mutation.balance_id)
        if balance is None or balance.state != mutation.from_state:
            raise InvalidTransitionError(
                f"Balance {mutation.balance_id} is no longer {mutation.from_state.value}",
                details={"payment_id": payment.id},
            )
        balance.state = mutation.to_state

    payment.state = transition.to_state
    if transition.failure_reason is not None:
        payment.failure_reason = transition.failure_reason
    if transition.to_state == PaymentState.completed:
        payment.completed_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "Payment: payment ID %s transitioned %s -> %s (%s balances)",
        payment.id,
        transition.from_state.value,
        transition.to_state.value,
        len(transition.balance_mutations),
    )
    return payment


def transition_payment(
    db: Session,
    payment: Payment,
    to_state: PaymentState,
    failure_reason: FailureReason | None = None,
) -> Transition:
    """Plan and apply a transition in one step; the caller commits."""
    transition = plan_transition(payment, to_state, failure_reason)
    apply_transition(db, payment, transition)
    return transition
