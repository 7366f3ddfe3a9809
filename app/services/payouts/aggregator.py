"""Payment aggregation: claims a payee's unpaid balances into one Payment."""

from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_CEILING, Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.payout import Balance, BalanceState, Payee, Payment, PaymentState
from app.services.common import coerce_uuid
from app.services.payouts.configuration import PayoutConfig
from app.services.payouts.eligibility import EligibilityEvaluator, format_skip_note
from app.services.payouts.errors import (
    BalanceClaimConflictError,
    CurrencyMismatchError,
    NoEligibleBalancesError,
    PayeeNotPayableError,
    PayoutValidationError,
)
from app.services.payouts.ledger import Balances, Payees

logger = logging.getLogger(__name__)


class PaymentAggregator:
    def __init__(
        self,
        config: PayoutConfig | None = None,
        evaluator: EligibilityEvaluator | None = None,
    ):
        self.config = config or PayoutConfig.from_settings()
        self.evaluator = evaluator or EligibilityEvaluator(self.config)

    def platform_fee_cents(self, payee: Payee, gross_cents: int) -> int:
        """Percentage fee on the gross amount, any fractional cent rounded up."""
        if not payee.charge_payout_fee or gross_cents <= 0:
            return 0
        fee = Decimal(gross_cents) * self.config.fee_percent / Decimal(100)
        return int(fee.to_integral_value(rounding=ROUND_CEILING))

    def _validate(self, payee: Payee, balances: list[Balance]) -> tuple[str, int]:
        if not balances:
            raise NoEligibleBalancesError(
                "No unpaid balances to pay out", details={"payee_id": str(payee.id)}
            )
        currencies = sorted({balance.currency for balance in balances})
        if len(currencies) > 1:
            raise CurrencyMismatchError(
                "Balances for one payment must share a currency",
                details={"payee_id": str(payee.id), "currencies": currencies},
            )
        claimed = [balance.id for balance in balances if balance.state != BalanceState.unpaid]
        if claimed:
            raise BalanceClaimConflictError(
                "Balances are already claimed by another payment",
                details={"payee_id": str(payee.id), "balance_ids": claimed},
            )
        gross = sum(balance.amount_cents for balance in balances)
        if gross <= 0:
            raise PayoutValidationError(
                "Unpaid balances do not add up to a positive amount",
                details={"payee_id": str(payee.id), "gross_amount_cents": gross},
            )
        return currencies[0], gross

    def prepare_payment(
        self,
        db: Session,
        payee: Payee,
        balances: list[Balance],
        cutoff_date: date,
    ) -> Payment:
        """Create a Payment for ``balances`` and claim them in one commit.

        Raises:
            PayoutValidationError: nothing is written
            BalanceClaimConflictError: another run claimed a balance first
        """
        currency, gross = self._validate(payee, balances)
        fee = self.platform_fee_cents(payee, gross)
        payment = Payment(
            payee_id=payee.id,
            state=PaymentState.created,
            currency=currency,
            gross_amount_cents=gross,
            platform_fee_cents=fee,
            amount_cents=gross - fee,
            payment_address=(payee.payout_address or "").strip(),
            payout_period_end_date=cutoff_date,
        )
        db.add(payment)
        db.flush()

        balance_ids = [balance.id for balance in balances]
        result = db.execute(
            update(Balance)
            .where(Balance.id.in_(balance_ids))
            .where(Balance.state == BalanceState.unpaid)
            .values(state=BalanceState.processing)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(balance_ids):
            db.rollback()
            raise BalanceClaimConflictError(
                "Balances were claimed by a concurrent run",
                details={"payee_id": str(payee.id), "balance_ids": balance_ids},
            )
        for balance in balances:
            db.expire(balance, ["state"])
        payment.balances = list(balances)
        db.commit()
        db.refresh(payment)
        logger.info(
            "Payment: created payment ID %s for payee %s, %s balances, amount %s %s (fee %s)",
            payment.id,
            payee.id,
            len(balances),
            payment.amount_cents,
            payment.currency,
            fee,
        )
        return payment

    def _payment_for(
        self, db: Session, payee: Payee, cutoff_date: date
    ) -> Payment:
        balances = Balances.unpaid_up_to(db, payee.id, cutoff_date)
        return self.prepare_payment(db, payee, balances, cutoff_date)

    def create_payments_up_to_date(
        self,
        db: Session,
        cutoff_date: date,
        payee_ids: list | None = None,
        add_note: bool = False,
    ) -> list[Payment]:
        """Create one Payment per payable payee; unpayable payees are omitted."""
        if payee_ids is None:
            payee_ids = Balances.payee_ids_with_unpaid(db, cutoff_date)
        payments: list[Payment] = []
        for payee_id in payee_ids:
            payee = Payees.lock(db, coerce_uuid(payee_id))
            if payee is None:
                logger.warning("Payout: payee %s not found, skipping", payee_id)
                continue
            if not self.evaluator.is_payable(db, payee, cutoff_date, add_note=add_note):
                # releases the payee row lock
                db.commit()
                continue
            try:
                payments.append(self._payment_for(db, payee, cutoff_date))
            except (PayoutValidationError, BalanceClaimConflictError) as exc:
                logger.warning("Payout: skipping payee %s: %s", payee.id, exc.message)
                db.commit()
        return payments

    def create_payment_for_payee(
        self,
        db: Session,
        payee_id,
        cutoff_date: date,
    ) -> Payment:
        """Force-create a payment for one payee, raising instead of skipping."""
        payee = Payees.lock(db, Payees.get(db, payee_id).id)
        result = self.evaluator.check(db, payee, cutoff_date)
        if not result.payable:
            note = format_skip_note(result.reason, cutoff_date, result.blocking_payment_ids)
            Payees.add_note(db, payee, note, reason=result.reason)
            db.commit()
            raise PayeeNotPayableError(
                note,
                details={
                    "payee_id": str(payee.id),
                    "reason": result.reason.value,
                    "blocking_payment_ids": list(result.blocking_payment_ids),
                },
            )
        return self._payment_for(db, payee, cutoff_date)
