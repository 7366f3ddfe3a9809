import enum
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class BalanceState(enum.Enum):
    unpaid = "unpaid"
    processing = "processing"
    paid = "paid"


class PaymentState(enum.Enum):
    created = "created"
    processing = "processing"
    unclaimed = "unclaimed"
    completed = "completed"
    failed = "failed"
    reversed = "reversed"
    returned = "returned"


TERMINAL_PAYMENT_STATES = frozenset(
    {
        PaymentState.completed,
        PaymentState.failed,
        PaymentState.reversed,
        PaymentState.returned,
    }
)
IN_FLIGHT_PAYMENT_STATES = frozenset(
    {PaymentState.created, PaymentState.processing, PaymentState.unclaimed}
)


class FailureReason(enum.Enum):
    invalid_recipient = "invalid_recipient"
    invalid_transaction = "invalid_transaction"
    transaction_failed = "transaction_failed"
    account_locked = "account_locked"
    receiving_limit_exceeded = "receiving_limit_exceeded"
    processor_rejected = "processor_rejected"
    transaction_not_found = "transaction_not_found"
    unclassified = "unclassified"


class PayoutSkipReason(enum.Enum):
    payouts_paused = "payouts_paused"
    no_payout_address = "no_payout_address"
    invalid_payout_address = "invalid_payout_address"
    invalid_characters = "invalid_characters"
    missing_legal_name = "missing_legal_name"
    payment_in_flight = "payment_in_flight"
    cooldown = "cooldown"
    below_minimum = "below_minimum"


payments_balances = Table(
    "payments_balances",
    Base.metadata,
    Column("payment_id", Integer, ForeignKey("payments.id"), primary_key=True),
    Column("balance_id", Integer, ForeignKey("balances.id"), primary_key=True),
)


class Payee(Base):
    __tablename__ = "payees"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    payout_address: Mapped[str | None] = mapped_column(String(255))
    legal_entity_name: Mapped[str | None] = mapped_column(String(255))
    split_payouts: Mapped[bool] = mapped_column(Boolean, default=False)
    split_payment_by_cents: Mapped[int | None] = mapped_column(Integer)
    charge_payout_fee: Mapped[bool] = mapped_column(Boolean, default=True)
    payouts_paused: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    balances = relationship("Balance", back_populates="payee")
    payments = relationship("Payment", back_populates="payee")
    notes = relationship("PayeeNote", back_populates="payee", order_by="PayeeNote.id")


class PayeeNote(Base):
    __tablename__ = "payee_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payees.id"), nullable=False, index=True
    )
    reason: Mapped[PayoutSkipReason | None] = mapped_column(Enum(PayoutSkipReason))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    payee = relationship("Payee", back_populates="notes")


class Balance(Base):
    __tablename__ = "balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payees.id"), nullable=False, index=True
    )
    earnings_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    state: Mapped[BalanceState] = mapped_column(
        Enum(BalanceState), default=BalanceState.unpaid, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    payee = relationship("Payee", back_populates="balances")
    payments = relationship(
        "Payment", secondary=payments_balances, back_populates="balances"
    )


class Payment(Base):
    __tablename__ = "payments"

    # Integer ids: MassPay unique ids are capped at 30 bytes, split parts
    # append "-<ordinal>".
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("payees.id"), nullable=False, index=True
    )
    state: Mapped[PaymentState] = mapped_column(
        Enum(PaymentState), default=PaymentState.created, index=True
    )
    processor: Mapped[str] = mapped_column(String(40), default="masspay")
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    gross_amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, default=0)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    processor_fee_cents: Mapped[int | None] = mapped_column(Integer)
    payment_address: Mapped[str | None] = mapped_column(String(255))
    payout_period_end_date: Mapped[date | None] = mapped_column(Date)
    correlation_id: Mapped[str | None] = mapped_column(String(80))
    txn_id: Mapped[str | None] = mapped_column(String(80))
    was_created_in_split_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    split_payments_info: Mapped[list | None] = mapped_column(JSON)
    failure_reason: Mapped[FailureReason | None] = mapped_column(Enum(FailureReason))
    processor_reason_code: Mapped[str | None] = mapped_column(String(40))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    payee = relationship("Payee", back_populates="payments")
    balances = relationship(
        "Balance",
        secondary=payments_balances,
        back_populates="payments",
        order_by="Balance.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_PAYMENT_STATES
