"""Payout dispatch: batches payees into jobs and submits payments to MassPay."""

from __future__ import annotations

import logging
from datetime import date
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
from app.services.payouts.ledger import Payments
from app.services.payouts.reconciliation import schedule_status_poll
from app.services.payouts.split import SplitCoordinator
from app.services.payouts.transitions import transition_payment

logger = logging.getLogger(__name__)


class PayoutDispatcher:
    def __init__(
        self,
        client: MassPayClient | None = None,
        config: PayoutConfig | None = None,
        split_coordinator: SplitCoordinator | None = None,
        schedule_poll: Callable[[int, int], None] | None = None,
    ):
        self.config = config or PayoutConfig.from_settings()
        self._client = client
        self._split_coordinator = split_coordinator
        self.schedule_poll = schedule_poll or schedule_status_poll

    @property
    def client(self) -> MassPayClient:
        if self._client is None:
            self._client = MassPayClient.from_settings()
        return self._client

    @property
    def split_coordinator(self) -> SplitCoordinator:
        if self._split_coordinator is None:
            self._split_coordinator = SplitCoordinator(
                self.client, self.config, schedule_poll=self.schedule_poll
            )
        return self._split_coordinator

    def enqueue_payments(self, payee_ids: list, cutoff_date: date) -> int:
        """Schedule one payout job per slice of payees, staggered to spread load.

        Returns the number of jobs scheduled.
        """
        from app.tasks.payouts import payout_payees

        size = self.config.recipients_per_job
        ids = [str(payee_id) for payee_id in payee_ids]
        jobs = 0
        for index, start in enumerate(range(0, len(ids), size)):
            payout_payees.apply_async(
                args=[cutoff_date.isoformat(), ids[start : start + size]],
                countdown=index * self.config.job_stagger_seconds,
            )
            jobs += 1
        logger.info(
            "Payout: enqueued %s jobs for %s payees up to %s", jobs, len(ids), cutoff_date
        )
        return jobs

    def should_split(self, payment: Payment) -> bool:
        if payment.amount_cents > self.config.max_split_payment_cents:
            return True
        payee = payment.payee
        return bool(
            payee
            and payee.split_payouts
            and payment.amount_cents > self.config.split_payment_by_cents(payee)
        )

    def process_payments(self, db: Session, payments: list[Payment]) -> None:
        """Submit payments; one payment failing never stops the rest."""
        regular: dict[str, list[Payment]] = {}
        split: list[Payment] = []
        for payment in payments:
            if payment.state != PaymentState.created:
                logger.warning(
                    "Payout: payment ID %s is %s, not submitting",
                    payment.id,
                    payment.state.value,
                )
            elif self.should_split(payment):
                split.append(payment)
            else:
                regular.setdefault(payment.currency, []).append(payment)

        for payment in split:
            try:
                self.split_coordinator.perform_split_payment(db, payment)
            except Exception:
                logger.exception("Payout: error processing split payment ID %s", payment.id)
                record_submission("split", "error")
                self._recover(db, [payment.id])

        # one MassPay call carries a single currency
        for batch in regular.values():
            try:
                self.perform_payments(db, batch)
            except Exception:
                payment_ids = [payment.id for payment in batch]
                logger.exception("Payout: error processing payments %s", payment_ids)
                record_submission("bulk", "error", len(batch))
                self._recover(db, payment_ids)

    def perform_payments(self, db: Session, payments: list[Payment]) -> None:
        """Submit regular payments in one bulk MassPay call."""
        client = self.client
        items = [
            MassPayItem(
                destination=payment.payment_address,
                amount_cents=payment.amount_cents,
                currency=payment.currency,
                unique_id=str(payment.id),
                note=Payments.note_for(payment),
            )
            for payment in payments
        ]
        payment_ids = [payment.id for payment in payments]
        try:
            response = client.mass_pay(items)
        except MassPayTransportError as exc:
            logger.warning("Payout: outcome unknown for payments %s: %s", payment_ids, exc)
            self._mark_unknown(db, payment_ids)
            record_submission("bulk", "transport_error", len(payments))
            return
        except MassPayError as exc:
            logger.warning("Payout: MassPay rejected payments %s: %s", payment_ids, exc)
            self._fail(db, payment_ids)
            record_submission("bulk", "rejected", len(payments))
            return
        except Exception:
            logger.exception("Payout: outcome unknown for payments %s", payment_ids)
            self._mark_unknown(db, payment_ids)
            record_submission("bulk", "error", len(payments))
            return

        if not response.succeeded:
            logger.warning(
                "Payout: MassPay ack %s for payments %s: %s",
                response.ack,
                payment_ids,
                response.errors,
            )
            self._fail(db, payment_ids, response.correlation_id)
            record_submission("bulk", "rejected", len(payments))
            return

        for payment in self._still_created(db, payment_ids):
            payment.correlation_id = response.correlation_id
            transition_payment(db, payment, PaymentState.processing)
        db.commit()
        record_submission("bulk", "accepted", len(payments))

    def _still_created(self, db: Session, payment_ids: list[int]) -> list[Payment]:
        """Row-lock and re-read each payment, keeping those still ``created``.

        A confirmation can reach a payment before the submission is recorded.
        """
        current = []
        for payment_id in payment_ids:
            payment = Payments.lock(db, payment_id)
            if payment is None:
                continue
            if payment.state != PaymentState.created:
                logger.info(
                    "Payout: payment ID %s already %s, leaving it",
                    payment_id,
                    payment.state.value,
                )
                continue
            current.append(payment)
        return current

    def _mark_unknown(self, db: Session, payment_ids: list[int]) -> None:
        # keep the balances claimed and ask MassPay later
        for payment in self._still_created(db, payment_ids):
            transition_payment(db, payment, PaymentState.processing)
        db.commit()
        for payment_id in payment_ids:
            self.schedule_poll(payment_id, self.config.pending_recheck_seconds)

    def _fail(
        self, db: Session, payment_ids: list[int], correlation_id: str | None = None
    ) -> None:
        for payment in self._still_created(db, payment_ids):
            payment.correlation_id = correlation_id
            transition_payment(
                db, payment, PaymentState.failed, FailureReason.processor_rejected
            )
        db.commit()

    def _recover(self, db: Session, payment_ids: list[int]) -> None:
        """Settle payments after an unexpected error.

        Payments still ``created`` never reached MassPay and are failed, which
        releases their balances. Any other non-terminal payment gets a poll.
        """
        db.rollback()
        try:
            for payment_id in payment_ids:
                payment = Payments.lock(db, payment_id)
                if payment is None or payment.is_terminal:
                    continue
                if payment.state == PaymentState.created:
                    transition_payment(
                        db, payment, PaymentState.failed, FailureReason.unclassified
                    )
                else:
                    self.schedule_poll(payment_id, self.config.pending_recheck_seconds)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Payout: could not settle payments %s", payment_ids)
