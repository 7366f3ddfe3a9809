from app.models.payout import (  # noqa: F401
    Balance,
    BalanceState,
    FailureReason,
    Payee,
    PayeeNote,
    Payment,
    PaymentState,
    PayoutSkipReason,
)
