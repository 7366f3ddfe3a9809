"""Create payees, balances and payments.

Revision ID: a1c3e5f7b9d0
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1c3e5f7b9d0"
down_revision = None
branch_labels = None
depends_on = None

_ENUMS = {
    "balancestate": ("unpaid", "processing", "paid"),
    "paymentstate": (
        "created",
        "processing",
        "unclaimed",
        "completed",
        "failed",
        "reversed",
        "returned",
    ),
    "failurereason": (
        "invalid_recipient",
        "invalid_transaction",
        "transaction_failed",
        "account_locked",
        "receiving_limit_exceeded",
        "processor_rejected",
        "transaction_not_found",
        "unclassified",
    ),
    "payoutskipreason": (
        "payouts_paused",
        "no_payout_address",
        "invalid_payout_address",
        "invalid_characters",
        "missing_legal_name",
        "payment_in_flight",
        "cooldown",
        "below_minimum",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "payees" not in existing_tables:
        op.create_table(
            "payees",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
            sa.Column("name", sa.String(160), nullable=False),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("payout_address", sa.String(255), nullable=True),
            sa.Column("legal_entity_name", sa.String(255), nullable=True),
            sa.Column("split_payouts", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("split_payment_by_cents", sa.Integer(), nullable=True),
            sa.Column("charge_payout_fee", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("payouts_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
        )

    if "payee_notes" not in existing_tables:
        op.create_table(
            "payee_notes",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("payee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payees.id"), nullable=False),
            sa.Column("reason", _enum("payoutskipreason"), nullable=True),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_payee_notes_payee_id", "payee_notes", ["payee_id"])

    if "balances" not in existing_tables:
        op.create_table(
            "balances",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("payee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payees.id"), nullable=False),
            sa.Column("earnings_date", sa.Date(), nullable=False),
            sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
            sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("state", _enum("balancestate"), nullable=False, server_default="unpaid"),
            *_timestamps(),
        )
        op.create_index("ix_balances_payee_id", "balances", ["payee_id"])
        op.create_index("ix_balances_earnings_date", "balances", ["earnings_date"])
        op.create_index("ix_balances_state", "balances", ["state"])

    if "payments" not in existing_tables:
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("payee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payees.id"), nullable=False),
            sa.Column("state", _enum("paymentstate"), nullable=False, server_default="created"),
            sa.Column("processor", sa.String(40), nullable=False, server_default="masspay"),
            sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
            sa.Column("gross_amount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("platform_fee_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("processor_fee_cents", sa.Integer(), nullable=True),
            sa.Column("payment_address", sa.String(255), nullable=True),
            sa.Column("payout_period_end_date", sa.Date(), nullable=True),
            sa.Column("correlation_id", sa.String(80), nullable=True),
            sa.Column("txn_id", sa.String(80), nullable=True),
            sa.Column("was_created_in_split_mode", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("split_payments_info", postgresql.JSON(), nullable=True),
            sa.Column("failure_reason", _enum("failurereason"), nullable=True),
            sa.Column("processor_reason_code", sa.String(40), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_payments_payee_id", "payments", ["payee_id"])
        op.create_index("ix_payments_state", "payments", ["state"])

    if "payments_balances" not in existing_tables:
        op.create_table(
            "payments_balances",
            sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), primary_key=True),
            sa.Column("balance_id", sa.Integer(), sa.ForeignKey("balances.id"), primary_key=True),
        )


def downgrade() -> None:
    op.drop_table("payments_balances")
    op.drop_index("ix_payments_state", table_name="payments")
    op.drop_index("ix_payments_payee_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_balances_state", table_name="balances")
    op.drop_index("ix_balances_earnings_date", table_name="balances")
    op.drop_index("ix_balances_payee_id", table_name="balances")
    op.drop_table("balances")
    op.drop_index("ix_payee_notes_payee_id", table_name="payee_notes")
    op.drop_table("payee_notes")
    op.drop_table("payees")
    bind = op.get_bind()
    for name in reversed(list(_ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
