"""Split-mode payouts.

A payment larger than one MassPay transfer is sent as several transfers with
unique ids ``<payment id>-<ordinal>``. Each transfer is tracked as one entry
of ``Payment.split_payments_info`` and the parent state is reduced from the
entries once they are all terminal.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.metrics import record_submission
from app.models.payout import FailureReason, Payment, PaymentState
from app.services.masspay import (
    MassPayClient,
    MassPayError,
    MassPayItem,
    MassPayTransportError,
)
from app.services.payouts.configuration import PayoutConfig
from app.services.payouts.errors import InvalidTransitionError
from app.services.payouts.ledger import Payments
from app.services.payouts.reconciliation import schedule_status_poll
from app.services.payouts.transitions import transition_payment

logger = logging.getLogger(__name__)

SPLIT_PAYMENT_TXN_ID = "split payment; see split_payments_info"
SPLIT_ENTRY_TERMINAL_STATES = frozenset({"completed", "failed", "reversed", "returned"})


def split_unique_id(payment_id: int, ordinal: int) -> str:
    return f"{payment_id}-{ordinal}"


def chunk_amounts(amount_cents: int, chunk_cents: int) -> list[int]:
    """Fewest chunks of at most ``chunk_cents``, largest first."""
    if chunk_cents <= 0:
        raise ValueError("chunk_cents must be positive")
    chunks = []
    remaining = amount_cents
    while remaining > 0:
        chunks.append(min(remaining, chunk_cents))
        remaining -= chunks[-1]
    return chunks


def new_split_entry(amount_cents: int) -> dict:
    return {
        "amount_cents": amount_cents,
        "state": "processing",
        "errors": [],
        "txn_id": None,
        "correlation_id": None,
        "processor_fee_cents": None,
        "failure_reason": None,
    }


def update_split_payment_state(db: Session, payment: Payment) -> Payment:
    """Fold the entry states into the parent payment. The caller commits.

    The parent completes only when every entry completed and takes a failure
    state only when every entry ended in that same state. Anything else leaves
    it processing.
    """
    if payment.is_terminal:
        return payment
    info = payment.split_payments_info or []
    states = [entry.get("state") for entry in info]
    if not states or any(state not in SPLIT_ENTRY_TERMINAL_STATES for state in states):
        return payment

    payment.processor_fee_cents = sum(
        entry.get("processor_fee_cents") or 0 for entry in info
    )
    if all(state == "completed" for state in states):
        payment.txn_id = SPLIT_PAYMENT_TXN_ID
        transition_payment(db, payment, PaymentState.completed)
    elif len(set(states)) == 1:
        target = PaymentState(states[0])
        reason = None
        if target == PaymentState.failed:
            reasons = {entry.get("failure_reason") for entry in info}
            reason = (
                FailureReason(reasons.pop())
                if len(reasons) == 1 and None not in reasons
                else FailureReason.unclassified
            )
        transition_payment(db, payment, target, reason)
    else:
        logger.error(
            "Payment: split payment ID %s ended with mixed outcomes %s; needs manual review",
            payment.id,
            states,
        )
        db.flush()
    return payment


class SplitCoordinator:
    def __init__(
        self,
        client: MassPayClient,
        config: PayoutConfig | None = None,
        schedule_poll: Callable[[int, int], None] | None = None,
    ):
        self.client = client
        self.config = config or PayoutConfig.from_settings()
        self.schedule_poll = schedule_poll or schedule_status_poll

    def perform_split_payment(self, db: Session, payment: Payment) -> Payment:
        """Submit ``payment`` as ordered transfers of at most the transfer ceiling."""
        payment = Payments.lock(db, payment.id) or payment
        if payment.state != PaymentState.created:
            raise InvalidTransitionError(
                f"Only created payments can be submitted, payment is {payment.state.value}",
                details={"payment_id": payment.id},
            )
        payment_id = payment.id
        chunks = chunk_amounts(payment.amount_cents, self.config.max_split_payment_cents)
        note = Payments.note_for(payment)
        destination = payment.payment_address
        currency = payment.currency

        payment.was_created_in_split_mode = True
        payment.split_payments_info = [new_split_entry(amount) for amount in chunks]
        transition_payment(db, payment, PaymentState.processing)
        db.commit()

        unresolved = False
        for ordinal, amount in enumerate(chunks, start=1):
            entry = new_split_entry(amount)
            item = MassPayItem(
                destination=destination,
                amount_cents=amount,
                currency=currency,
                unique_id=split_unique_id(payment_id, ordinal),
                note=note,
            )
            try:
                response = self.client.mass_pay([item])
            except MassPayTransportError as exc:
                unresolved = True
                entry["errors"].append(str(exc))
                record_submission("split", "transport_error")
                logger.warning(
                    "Payout: split transfer %s outcome unknown: %s", item.unique_id, exc
                )
            except MassPayError as exc:
                entry["state"] = "failed"
                entry["failure_reason"] = FailureReason.processor_rejected.value
                entry["errors"].append(str(exc))
                record_submission("split", "rejected")
                logger.warning("Payout: split transfer %s rejected: %s", item.unique_id, exc)
            except Exception as exc:
                unresolved = True
                entry["errors"].append(str(exc))
                record_submission("split", "error")
                logger.exception("Payout: split transfer %s outcome unknown", item.unique_id)
            else:
                entry["correlation_id"] = response.correlation_id
                entry["errors"].extend(response.errors)
                if response.succeeded:
                    record_submission("split", "accepted")
                else:
                    entry["state"] = "failed"
                    entry["failure_reason"] = FailureReason.processor_rejected.value
                    record_submission("split", "rejected")

            payment = self._record_transfer(db, payment_id, ordinal, entry)

        logger.info(
            "Payout: split payment ID %s of %s sent as %s transfers",
            payment_id,
            payment.amount_cents,
            len(chunks),
        )
        update_split_payment_state(db, payment)
        db.commit()
        if unresolved:
            self.schedule_poll(payment_id, self.config.pending_recheck_seconds)
        return payment

    def _record_transfer(
        self, db: Session, payment_id: int, ordinal: int, result: dict
    ) -> Payment:
        """Merge one submission result into the stored entry and commit.

        A confirmation may already have resolved the entry; its state, txn id
        and fee are kept.
        """
        payment = Payments.lock(db, payment_id)
        info = [dict(entry) for entry in payment.split_payments_info or []]
        stored = info[ordinal - 1]
        stored["errors"] = list(stored.get("errors") or []) + result["errors"]
        if result["correlation_id"]:
            stored["correlation_id"] = result["correlation_id"]
            payment.correlation_id = result["correlation_id"]
        if stored.get("state") == "processing" and result["state"] != "processing":
            stored["state"] = result["state"]
            stored["failure_reason"] = result["failure_reason"]
        payment.split_payments_info = info
        db.commit()
        return payment
