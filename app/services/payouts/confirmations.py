"""Apply MassPay delivery notifications to payments and balances.

Events can arrive duplicated and out of order. Each one is applied under a
row lock on its payment, terminal targets are never touched again, and fees
are assigned rather than accumulated so reapplying an event changes nothing.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Mapping

from sqlalchemy.orm import Session

from app.metrics import record_confirmation_event
from app.models.payout import Payment, PaymentState
from app.services.payouts.configuration import PayoutConfig
from app.services.payouts.events import (
    ConfirmationEvent,
    decode_notification,
    failure_reason_for,
)
from app.services.payouts.ledger import Payments
from app.services.payouts.reconciliation import schedule_status_poll
from app.services.payouts.split import (
    SPLIT_ENTRY_TERMINAL_STATES,
    update_split_payment_state,
)
from app.services.payouts.transitions import can_transition, transition_payment

logger = logging.getLogger(__name__)


class EventOutcome(enum.Enum):
    applied = "applied"
    duplicate = "duplicate"
    unknown_target = "unknown_target"
    invalid = "invalid"


def _status_label(event: ConfirmationEvent) -> str:
    return event.status.value if event.status else "unknown"


class ConfirmationHandler:
    def __init__(
        self,
        config: PayoutConfig | None = None,
        schedule_poll: Callable[[int, int], None] | None = None,
    ):
        self.config = config or PayoutConfig.from_settings()
        self.schedule_poll = schedule_poll or schedule_status_poll

    def handle_notification(
        self, db: Session, form: Mapping[str, str]
    ) -> list[EventOutcome]:
        """Apply every transfer in one notification. Never raises."""
        events = decode_notification(form)
        logger.info("Payout: notification with %s events", len(events))
        outcomes = []
        for event in events:
            try:
                outcomes.append(self.handle_confirmation_event(db, event))
            except Exception:
                db.rollback()
                logger.exception("Payout: failed to apply event for %s", event.unique_id)
                record_confirmation_event(_status_label(event), EventOutcome.invalid.value)
                outcomes.append(EventOutcome.invalid)
        return outcomes

    def handle_confirmation_event(
        self, db: Session, event: ConfirmationEvent
    ) -> EventOutcome:
        if event.error:
            logger.warning("Payout: dropping event %r: %s", event.unique_id, event.error)
            record_confirmation_event(_status_label(event), EventOutcome.invalid.value)
            return EventOutcome.invalid

        payment = Payments.lock(db, event.payment_id)
        if payment is None:
            logger.warning(
                "Payout: unique_id %s does not match a payment", event.unique_id
            )
            outcome = EventOutcome.unknown_target
        elif event.is_split:
            outcome = self._apply_split(db, payment, event)
        else:
            outcome = self._apply(db, payment, event)
        db.commit()
        record_confirmation_event(_status_label(event), outcome.value)
        logger.info(
            "Payout: event %s %s -> %s", event.unique_id, _status_label(event), outcome.value
        )
        return outcome

    def _apply(
        self, db: Session, payment: Payment, event: ConfirmationEvent
    ) -> EventOutcome:
        if payment.was_created_in_split_mode:
            logger.warning(
                "Payout: unique_id %s targets split payment ID %s without an ordinal",
                event.unique_id,
                payment.id,
            )
            return EventOutcome.unknown_target
        if payment.is_terminal:
            return EventOutcome.duplicate
        if event.receiver_address and event.receiver_address != payment.payment_address:
            logger.warning(
                "Payout: payment ID %s was sent to %s but MassPay reports %s",
                payment.id,
                payment.payment_address,
                event.receiver_address,
            )

        changed = False
        if payment.state == PaymentState.created:
            # the notification can beat the dispatcher's own commit
            transition_payment(db, payment, PaymentState.processing)
            changed = True
        if event.transfer_txn_id and payment.txn_id != event.transfer_txn_id:
            payment.txn_id = event.transfer_txn_id
            changed = True
        if (
            event.processor_fee_cents is not None
            and payment.processor_fee_cents != event.processor_fee_cents
        ):
            payment.processor_fee_cents = event.processor_fee_cents
            changed = True

        target = event.target_state
        if target == PaymentState.processing:
            self.schedule_poll(payment.id, self.config.pending_recheck_seconds)
        elif target != payment.state:
            if can_transition(payment.state, target):
                reason = None
                if target == PaymentState.failed:
                    reason = failure_reason_for(event.reason_code)
                    payment.processor_reason_code = event.reason_code
                transition_payment(db, payment, target, reason)
                changed = True
            else:
                logger.info(
                    "Payout: ignoring %s for payment ID %s in state %s",
                    target.value,
                    payment.id,
                    payment.state.value,
                )
        db.flush()
        return EventOutcome.applied if changed else EventOutcome.duplicate

    def _apply_split(
        self, db: Session, payment: Payment, event: ConfirmationEvent
    ) -> EventOutcome:
        info = [dict(entry) for entry in payment.split_payments_info or []]
        if not payment.was_created_in_split_mode or not 1 <= event.ordinal <= len(info):
            logger.warning(
                "Payout: unique_id %s does not match a split transfer of payment ID %s",
                event.unique_id,
                payment.id,
            )
            return EventOutcome.unknown_target

        entry = info[event.ordinal - 1]
        if entry.get("state") in SPLIT_ENTRY_TERMINAL_STATES:
            return EventOutcome.duplicate

        before = dict(entry)
        if event.transfer_txn_id:
            entry["txn_id"] = event.transfer_txn_id
        if event.processor_fee_cents is not None:
            entry["processor_fee_cents"] = event.processor_fee_cents

        target = event.target_state
        current = PaymentState(entry["state"])
        if target == PaymentState.processing:
            self.schedule_poll(payment.id, self.config.pending_recheck_seconds)
        elif target != current:
            if can_transition(current, target):
                entry["state"] = target.value
                if target == PaymentState.failed:
                    entry["failure_reason"] = failure_reason_for(event.reason_code).value
                    if event.reason_code:
                        entry["errors"] = list(entry.get("errors") or []) + [
                            f"reason code {event.reason_code}"
                        ]
            else:
                logger.info(
                    "Payout: ignoring %s for split transfer %s in state %s",
                    target.value,
                    event.unique_id,
                    current.value,
                )

        if entry == before:
            return EventOutcome.duplicate
        payment.split_payments_info = info
        update_split_payment_state(db, payment)
        db.flush()
        return EventOutcome.applied
