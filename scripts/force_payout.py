import argparse
from datetime import date

from dotenv import load_dotenv

from app.db import SessionLocal
from app.services.payouts.aggregator import PaymentAggregator
from app.services.payouts.configuration import PayoutConfig
from app.services.payouts.dispatcher import PayoutDispatcher
from app.services.payouts.errors import PayoutError


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Create and submit a payout for one payee outside the weekly run."
    )
    parser.add_argument("--payee-id", required=True)
    parser.add_argument(
        "--cutoff-date",
        type=date.fromisoformat,
        default=None,
        help="Include balances earned up to this date (YYYY-MM-DD). Defaults to today.",
    )
    return parser.parse_args(argv)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)
    cutoff_date = args.cutoff_date or date.today()
    config = PayoutConfig.from_settings()
    db = SessionLocal()
    try:
        try:
            payment = PaymentAggregator(config).create_payment_for_payee(
                db, args.payee_id, cutoff_date
            )
        except PayoutError as exc:
            print(f"Payout not created: {exc.message}")
            return 1
        print(
            f"Created payment {payment.id}: {payment.amount_cents} {payment.currency} "
            f"(fee {payment.platform_fee_cents})"
        )
        PayoutDispatcher(config=config).process_payments(db, [payment])
        db.refresh(payment)
        print(f"Payment {payment.id} is {payment.state.value}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
