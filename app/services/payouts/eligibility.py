"""Payee eligibility checks run before a payment is created or dispatched."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from app.models.payout import (
    IN_FLIGHT_PAYMENT_STATES,
    Payee,
    Payment,
    PaymentState,
    PayoutSkipReason,
)
from app.services.payouts.configuration import PROCESSOR_NAME, PayoutConfig
from app.services.payouts.ledger import Balances, Payees

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"\A[^@\s]+@[^@\s]+\.[^@\s]+\Z")

_SKIP_MESSAGES = {
    PayoutSkipReason.payouts_paused: "payouts are paused for the account",
    PayoutSkipReason.no_payout_address: "the account does not have a valid payout address",
    PayoutSkipReason.invalid_payout_address: "the account does not have a valid payout address",
    PayoutSkipReason.invalid_characters: "the payout address contains invalid characters",
    PayoutSkipReason.missing_legal_name: "the account does not have a valid name on record",
    PayoutSkipReason.cooldown: "the account was paid out too recently",
    PayoutSkipReason.below_minimum: "the unpaid balance is below the minimum payout amount",
}


@dataclass(frozen=True)
class EligibilityResult:
    payable: bool
    reason: PayoutSkipReason | None = None
    blocking_payment_ids: tuple[int, ...] = ()


def _format_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def format_skip_note(
    reason: PayoutSkipReason,
    as_of_date: date,
    blocking_payment_ids: tuple[int, ...] = (),
) -> str:
    """Human-readable audit note derived from a structured skip reason."""
    if reason == PayoutSkipReason.payment_in_flight:
        ids = ", ".join(str(payment_id) for payment_id in blocking_payment_ids)
        because = f"there are already payouts (ID {ids}) in processing"
    else:
        because = _SKIP_MESSAGES[reason]
    return f"Payout via {PROCESSOR_NAME} on {_format_date(as_of_date)} skipped because {because}"


class EligibilityEvaluator:
    def __init__(self, config: PayoutConfig | None = None):
        self.config = config or PayoutConfig.from_settings()

    def check(self, db: Session, payee: Payee, as_of_date: date) -> EligibilityResult:
        if payee.payouts_paused:
            return EligibilityResult(False, PayoutSkipReason.payouts_paused)

        address = (payee.payout_address or "").strip()
        if not address:
            return EligibilityResult(False, PayoutSkipReason.no_payout_address)
        if not EMAIL_REGEX.match(address):
            return EligibilityResult(False, PayoutSkipReason.invalid_payout_address)
        if not address.isascii():
            return EligibilityResult(False, PayoutSkipReason.invalid_characters)
        if not (payee.legal_entity_name or "").strip():
            return EligibilityResult(False, PayoutSkipReason.missing_legal_name)

        in_flight_ids = tuple(
            row[0]
            for row in db.query(Payment.id)
            .filter(Payment.payee_id == payee.id)
            .filter(Payment.state.in_(IN_FLIGHT_PAYMENT_STATES))
            .order_by(Payment.id.asc())
            .all()
        )
        if in_flight_ids:
            return EligibilityResult(
                False, PayoutSkipReason.payment_in_flight, in_flight_ids
            )

        last_completed = (
            db.query(Payment)
            .filter(Payment.payee_id == payee.id)
            .filter(Payment.state == PaymentState.completed)
            .order_by(Payment.payout_period_end_date.desc().nulls_last(), Payment.id.desc())
            .first()
        )
        if last_completed is not None:
            paid_through = last_completed.payout_period_end_date or last_completed.created_at.date()
            if as_of_date - paid_through < self.config.cooldown:
                return EligibilityResult(False, PayoutSkipReason.cooldown)

        unpaid_cents = Balances.unpaid_total_cents(db, payee.id, as_of_date)
        if unpaid_cents < self.config.min_amount_cents:
            return EligibilityResult(False, PayoutSkipReason.below_minimum)

        return EligibilityResult(True)

    def is_payable(
        self,
        db: Session,
        payee: Payee,
        as_of_date: date,
        add_note: bool = False,
    ) -> bool:
        result = self.check(db, payee, as_of_date)
        if not result.payable and add_note:
            content = format_skip_note(result.reason, as_of_date, result.blocking_payment_ids)
            Payees.add_note(db, payee, content, reason=result.reason)
            db.commit()
            logger.info("Payee %s not payable: %s", payee.id, result.reason.value)
        return result.payable


def is_payable(
    db: Session,
    payee: Payee,
    as_of_date: date,
    add_note: bool = False,
    config: PayoutConfig | None = None,
) -> bool:
    return EligibilityEvaluator(config).is_payable(db, payee, as_of_date, add_note=add_note)


def check_payable(
    db: Session,
    payee: Payee,
    as_of_date: date,
    config: PayoutConfig | None = None,
) -> EligibilityResult:
    return EligibilityEvaluator(config).check(db, payee, as_of_date)
