"""Payout services package.

    from app.services import payouts as payout_service
    payout_service.payments.get(db, payment_id)
    payout_service.PaymentAggregator(config).create_payments_up_to_date(db, cutoff)
"""

from app.services.payouts.aggregator import PaymentAggregator
from app.services.payouts.configuration import PayoutConfig
from app.services.payouts.confirmations import ConfirmationHandler, EventOutcome
from app.services.payouts.dispatcher import PayoutDispatcher
from app.services.payouts.eligibility import (
    EligibilityEvaluator,
    EligibilityResult,
    check_payable,
    is_payable,
)
from app.services.payouts.ledger import Balances, Payees, Payments
from app.services.payouts.split import SplitCoordinator

# Singleton instances for service access
payees = Payees()
balances = Balances()
payments = Payments()
