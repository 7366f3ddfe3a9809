from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.payout import (
    BalanceState,
    FailureReason,
    PaymentState,
    PayoutSkipReason,
)


class BalanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payee_id: UUID
    earnings_date: date
    amount_cents: int
    currency: str
    state: BalanceState


class SplitPaymentInfo(BaseModel):
    amount_cents: int
    state: str
    errors: list[str] = Field(default_factory=list)
    txn_id: str | None = None
    correlation_id: str | None = None
    processor_fee_cents: int | None = None
    failure_reason: str | None = None


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payee_id: UUID
    state: PaymentState
    processor: str
    currency: str
    gross_amount_cents: int
    platform_fee_cents: int
    amount_cents: int
    processor_fee_cents: int | None = None
    payment_address: str | None = None
    payout_period_end_date: date | None = None
    correlation_id: str | None = None
    txn_id: str | None = None
    was_created_in_split_mode: bool
    split_payments_info: list[SplitPaymentInfo] | None = None
    failure_reason: FailureReason | None = None
    processor_reason_code: str | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    balances: list[BalanceRead] = Field(default_factory=list)


class ForcePaymentRequest(BaseModel):
    cutoff_date: date | None = None


class EligibilityRead(BaseModel):
    payable: bool
    reason: PayoutSkipReason | None = None
    blocking_payment_ids: list[int] = Field(default_factory=list)


class ProcessorBalanceRead(BaseModel):
    balance_cents: int


class NotificationResult(BaseModel):
    received: int
    outcomes: dict[str, int] = Field(default_factory=dict)


class ListResponse(BaseModel):
    items: list[PaymentRead]
    count: int
    limit: int
    offset: int
