"""Celery tasks for the payout run and payout status polling."""

import logging
import time
from datetime import date, timedelta

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.metrics import observe_job
from app.services.masspay import MassPayClient, MassPayTransportError
from app.services.payouts.aggregator import PaymentAggregator
from app.services.payouts.configuration import PayoutConfig
from app.services.payouts.dispatcher import PayoutDispatcher
from app.services.payouts.ledger import Balances, Payments
from app.services.payouts.reconciliation import sync_payment

logger = logging.getLogger(__name__)


def _cutoff(cutoff_date: str | None) -> date:
    if cutoff_date:
        return date.fromisoformat(cutoff_date)
    return date.today() - timedelta(days=settings.payout_holding_days)


@celery_app.task(name="app.tasks.payouts.schedule_payouts")
def schedule_payouts(cutoff_date: str | None = None):
    """Weekly entry point: fan the payees with unpaid balances out into payout jobs."""
    start = time.monotonic()
    status = "success"
    if not settings.payouts_enabled:
        logger.info("Payouts disabled, skipping payout run")
        observe_job("payout_schedule", "skipped", time.monotonic() - start)
        return 0
    session = SessionLocal()
    try:
        cutoff = _cutoff(cutoff_date)
        payee_ids = Balances.payee_ids_with_unpaid(session, cutoff)
        logger.info("Payout run up to %s for %s payees", cutoff, len(payee_ids))
        return PayoutDispatcher(config=PayoutConfig.from_settings()).enqueue_payments(
            payee_ids, cutoff
        )
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("Payout run scheduling failed.")
        raise
    finally:
        session.close()
        observe_job("payout_schedule", status, time.monotonic() - start)


@celery_app.task(name="app.tasks.payouts.payout_payees")
def payout_payees(cutoff_date: str, payee_ids: list[str]):
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        config = PayoutConfig.from_settings()
        payments = PaymentAggregator(config).create_payments_up_to_date(
            session, date.fromisoformat(cutoff_date), payee_ids, add_note=True
        )
        logger.info(
            "Payout job: %s payments for %s payees up to %s",
            len(payments),
            len(payee_ids),
            cutoff_date,
        )
        if payments:
            PayoutDispatcher(config=config).process_payments(session, payments)
        return [payment.id for payment in payments]
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("Payout job failed.")
        raise
    finally:
        session.close()
        observe_job("payout_payees", status, time.monotonic() - start)


@celery_app.task(
    name="app.tasks.payouts.update_payout_status",
    bind=True,
    max_retries=5,
    autoretry_for=(MassPayTransportError,),
    retry_backoff=True,
)
def update_payout_status(self, payment_id: int):
    """Ask MassPay for the state of a payment whose outcome is still unknown."""
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        payment = Payments.lock(session, payment_id)
        if payment is None:
            logger.warning("Payment %s not found for status update", payment_id)
            status = "skipped"
            return None
        if payment.is_terminal:
            status = "skipped"
            return payment.state.value
        sync_payment(session, MassPayClient.from_settings(), payment)
        session.commit()
        logger.info("Payment %s status now %s", payment_id, payment.state.value)
        return payment.state.value
    except Exception:
        status = "error"
        session.rollback()
        raise
    finally:
        session.close()
        observe_job("payout_status_update", status, time.monotonic() - start)
