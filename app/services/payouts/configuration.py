"""Payout configuration passed into the payout services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from app.config import Settings, settings as app_settings

PROCESSOR_NAME = "MassPay"


@dataclass(frozen=True)
class PayoutConfig:
    currency: str = "USD"
    fee_percent: Decimal = Decimal("2")
    max_split_payment_cents: int = 20_000_00
    recipients_per_job: int = 240
    job_stagger_seconds: int = 60
    cooldown: timedelta = timedelta(weeks=1)
    min_amount_cents: int = 10_00
    pending_recheck_seconds: int = 300

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "PayoutConfig":
        source = source or app_settings
        return cls(
            currency=source.payout_currency,
            fee_percent=source.payout_fee_percent,
            max_split_payment_cents=source.payout_max_split_payment_cents,
            recipients_per_job=source.payout_recipients_per_job,
            job_stagger_seconds=source.payout_job_stagger_seconds,
            cooldown=timedelta(days=source.payout_cooldown_days),
            min_amount_cents=source.payout_min_amount_cents,
            pending_recheck_seconds=source.payout_pending_recheck_seconds,
        )

    def split_payment_by_cents(self, payee) -> int:
        """Per-payee split threshold, clamped to the single-transfer ceiling."""
        cents = payee.split_payment_by_cents
        if cents and 0 < cents <= self.max_split_payment_cents:
            return cents
        return self.max_split_payment_cents
