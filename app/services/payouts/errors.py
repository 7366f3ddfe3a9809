"""Exceptions raised by the payout services."""


class PayoutError(Exception):
    """Base class for payout domain errors."""

    code = "payout_error"

    def __init__(self, message: str, details: object | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class PayoutValidationError(PayoutError):
    code = "payout_validation_error"


class NoEligibleBalancesError(PayoutValidationError):
    code = "no_eligible_balances"


class CurrencyMismatchError(PayoutValidationError):
    code = "currency_mismatch"


class PayeeNotPayableError(PayoutValidationError):
    code = "payee_not_payable"


class BalanceClaimConflictError(PayoutError):
    """Another run claimed one of the balances first."""

    code = "balance_claim_conflict"


class InvalidTransitionError(PayoutError):
    code = "invalid_transition"
