"""Resolve payments whose outcome is unknown by searching MassPay.

Used by the follow-up poll scheduled after a ``Pending`` confirmation or a
submission whose transport failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from sqlalchemy.orm import Session

from app.models.payout import FailureReason, Payment, PaymentState
from app.services.common import cents_to_dollars, dollars_to_cents
from app.services.masspay import (
    AmbiguousTransactionError,
    MassPayClient,
    TransactionNotFoundError,
)
from app.services.payouts.transitions import can_transition, transition_payment

logger = logging.getLogger(__name__)

# TransactionSearch reports both legs when a transfer was reversed or returned.
_COUNTERPART_STATES = {
    frozenset({"completed", "reversed"}): PaymentState.reversed,
    frozenset({"completed", "returned"}): PaymentState.returned,
}
_POLL_RESOLVABLE_STATES = frozenset({"unclaimed", "completed"})


@dataclass(frozen=True)
class SearchResult:
    state: str
    transaction_id: str | None
    processor_fee_cents: int | None


def schedule_status_poll(payment_id: int, countdown: int) -> None:
    from app.tasks.payouts import update_payout_status

    update_payout_status.apply_async(args=[payment_id], countdown=countdown)


def _fee_cents(value: str | None) -> int | None:
    # MassPay reports fees as negative amounts on sent transactions
    cents = dollars_to_cents(value)
    return abs(cents) if cents is not None else None


def search_payment(
    client: MassPayClient,
    amount_cents: int,
    start_date: datetime,
    end_date: datetime | None = None,
    transaction_id: str | None = None,
    payment_address: str | None = None,
) -> SearchResult | None:
    """Find the single MassPay transaction for a transfer.

    Raises:
        AmbiguousTransactionError: more than one candidate matched
        TransactionNotFoundError: nothing matched a known transaction id
    """
    if not transaction_id and not payment_address:
        return None
    if transaction_id:
        rows = client.transaction_search(start_date, transaction_id=transaction_id)
    else:
        rows = client.transaction_search(
            start_date,
            end_date=end_date or datetime.now(timezone.utc),
            amount_cents=amount_cents,
            email=payment_address,
        )

    amount = cents_to_dollars(amount_cents)
    if len(rows) == 2 and transaction_id:
        statuses = frozenset((row.status or "").lower() for row in rows)
        ids = {row.transaction_id for row in rows}
        amounts = {row.amount for row in rows}
        state = _COUNTERPART_STATES.get(statuses)
        if state is not None and transaction_id in ids and amounts == {amount, f"-{amount}"}:
            original = next(row for row in rows if row.amount == amount)
            return SearchResult(
                state.value, original.transaction_id, _fee_cents(original.fee_amount)
            )
    if len(rows) > 1:
        raise AmbiguousTransactionError(
            f"{len(rows)} MassPay transactions found for {payment_address or transaction_id} "
            f"with amount {amount} since {start_date.date()}"
        )
    if len(rows) == 1:
        row = rows[0]
        return SearchResult(
            (row.status or "").lower(), row.transaction_id, _fee_cents(row.fee_amount)
        )
    if transaction_id:
        raise TransactionNotFoundError(
            f"No MassPay transaction found for transaction ID {transaction_id} and amount {amount}"
        )
    return None


def latest_state(
    client: MassPayClient,
    amount_cents: int,
    transaction_id: str | None,
    start_date: datetime,
    current_state: str,
    payment_address: str | None = None,
    known_transaction_ids: frozenset[str] = frozenset(),
) -> SearchResult | None:
    """Latest MassPay state of one transfer.

    A transfer without a transaction id is looked up by amount and address,
    ignoring transactions already matched to sibling transfers. Returns
    ``None`` when such a lookup finds nothing, and ``current_state``
    (with the transaction id unchanged) unless MassPay gives one clean answer.
    """
    unchanged = SearchResult(current_state, transaction_id, None)
    if transaction_id:
        rows = client.transaction_search(
            start_date, transaction_id=transaction_id, amount_cents=amount_cents
        )
    elif payment_address:
        rows = [
            row
            for row in client.transaction_search(
                start_date,
                end_date=datetime.now(timezone.utc),
                amount_cents=amount_cents,
                email=payment_address,
            )
            if row.transaction_id not in known_transaction_ids
        ]
        if not rows:
            return None
    else:
        return unchanged
    if len(rows) != 1:
        logger.warning(
            "Payment: %s MassPay transactions match transfer of %s to %s",
            len(rows),
            amount_cents,
            transaction_id or payment_address,
        )
        return unchanged
    row = rows[0]
    if not (row.status and row.amount and row.transaction_id and row.fee_amount):
        return unchanged
    status = row.status.lower()
    if status not in _POLL_RESOLVABLE_STATES:
        return unchanged
    return SearchResult(status, row.transaction_id, _fee_cents(row.fee_amount))


def _sync_split_entries(client: MassPayClient, payment: Payment, start: datetime) -> list[dict]:
    info = [dict(entry) for entry in payment.split_payments_info or []]
    known_ids = frozenset(entry["txn_id"] for entry in info if entry.get("txn_id"))
    for ordinal, entry in enumerate(info, start=1):
        if entry.get("state") not in ("processing", "unclaimed"):
            continue
        result = latest_state(
            client,
            entry["amount_cents"],
            entry.get("txn_id"),
            start,
            entry["state"],
            payment_address=payment.payment_address,
            known_transaction_ids=known_ids,
        )
        if result is None:
            logger.info(
                "Payment: split transfer %s-%s not found on MassPay", payment.id, ordinal
            )
            entry["state"] = "failed"
            entry["failure_reason"] = FailureReason.transaction_not_found.value
            continue
        entry["state"] = result.state
        if result.transaction_id:
            entry["txn_id"] = result.transaction_id
            known_ids = known_ids | {result.transaction_id}
        if result.processor_fee_cents is not None:
            entry["processor_fee_cents"] = result.processor_fee_cents
    return info


def _search_window_start(payment: Payment) -> datetime:
    created = payment.created_at or datetime.now(timezone.utc)
    return datetime.combine(created.date() - timedelta(days=1), time.min, tzinfo=timezone.utc)


def sync_payment(db: Session, client: MassPayClient, payment: Payment) -> Payment:
    """Bring a non-terminal payment up to date with MassPay. The caller commits."""
    if payment.is_terminal:
        return payment
    start = _search_window_start(payment)
    if payment.was_created_in_split_mode:
        from app.services.payouts.split import update_split_payment_state

        payment.split_payments_info = _sync_split_entries(client, payment, start)
        update_split_payment_state(db, payment)
        return payment

    result = search_payment(
        client,
        payment.amount_cents,
        start,
        transaction_id=payment.txn_id,
        payment_address=None if payment.txn_id else payment.payment_address,
    )
    if result is None:
        logger.info("Payment: payment ID %s not found on MassPay", payment.id)
        if can_transition(payment.state, PaymentState.failed):
            transition_payment(
                db, payment, PaymentState.failed, FailureReason.transaction_not_found
            )
        return payment

    if result.transaction_id:
        payment.txn_id = result.transaction_id
    if result.processor_fee_cents is not None:
        payment.processor_fee_cents = result.processor_fee_cents
    try:
        target = PaymentState(result.state)
    except ValueError:
        # "pending" and other statuses leave the payment where it is
        logger.info(
            "Payment: payment ID %s still %s on MassPay", payment.id, result.state
        )
        db.flush()
        return payment
    if payment.state == PaymentState.created and target != PaymentState.created:
        transition_payment(db, payment, PaymentState.processing)
    if target != payment.state and can_transition(payment.state, target):
        reason = FailureReason.unclassified if target == PaymentState.failed else None
        transition_payment(db, payment, target, reason)
    db.flush()
    return payment
