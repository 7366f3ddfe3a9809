"""Payee and balance ledger services."""

from __future__ import annotations

from datetime import date

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.payout import (
    Balance,
    BalanceState,
    Payee,
    PayeeNote,
    Payment,
    PaymentState,
    PayoutSkipReason,
)
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
)


class Payees:
    @staticmethod
    def get(db: Session, payee_id) -> Payee:
        return get_or_404(db, Payee, payee_id, detail="Payee not found")

    @staticmethod
    def lock(db: Session, payee_id) -> Payee | None:
        """Row-lock a payee for the rest of the transaction."""
        return (
            db.query(Payee)
            .filter(Payee.id == payee_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def add_note(
        db: Session,
        payee: Payee,
        content: str,
        reason: PayoutSkipReason | None = None,
    ) -> PayeeNote:
        note = PayeeNote(payee_id=payee.id, content=content, reason=reason)
        db.add(note)
        db.flush()
        return note


class Balances:
    @staticmethod
    def unpaid_up_to(db: Session, payee_id, cutoff_date: date) -> list[Balance]:
        return (
            db.query(Balance)
            .filter(Balance.payee_id == payee_id)
            .filter(Balance.state == BalanceState.unpaid)
            .filter(Balance.earnings_date <= cutoff_date)
            .order_by(Balance.earnings_date.asc(), Balance.id.asc())
            .all()
        )

    @staticmethod
    def unpaid_total_cents(db: Session, payee_id, cutoff_date: date) -> int:
        total = (
            db.query(func.coalesce(func.sum(Balance.amount_cents), 0))
            .filter(Balance.payee_id == payee_id)
            .filter(Balance.state == BalanceState.unpaid)
            .filter(Balance.earnings_date <= cutoff_date)
            .scalar()
        )
        return int(total or 0)

    @staticmethod
    def payee_ids_with_unpaid(db: Session, cutoff_date: date) -> list:
        rows = (
            db.query(Balance.payee_id)
            .filter(Balance.state == BalanceState.unpaid)
            .filter(Balance.earnings_date <= cutoff_date)
            .distinct()
            .all()
        )
        return [row[0] for row in rows]


class Payments:
    @staticmethod
    def get(db: Session, payment_id) -> Payment:
        return get_or_404(db, Payment, payment_id, detail="Payment not found")

    @staticmethod
    def lock(db: Session, payment_id: int) -> Payment | None:
        """Row-lock a payment for the rest of the transaction."""
        return (
            db.query(Payment)
            .filter(Payment.id == payment_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def list_for_payee(
        db: Session,
        payee_id,
        state: PaymentState | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ) -> list[Payment]:
        query = db.query(Payment).filter(Payment.payee_id == coerce_uuid(payee_id))
        if state is not None:
            query = query.filter(Payment.state == state)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Payment.created_at, "id": Payment.id, "state": Payment.state},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def note_for(payment: Payment) -> str:
        """Memo sent with each MassPay item."""
        payee = payment.payee
        name = (payee.legal_entity_name or payee.name) if payee else ""
        return f"{name}, earnings through {payment.payout_period_end_date}"
