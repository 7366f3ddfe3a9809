import os
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.models.payout import Balance, BalanceState, Payee, Payment, PaymentState
from app.services.payouts.configuration import PayoutConfig
from tests.mocks import FakeMassPayClient, PollRecorder

EARNINGS_DATE = date(2026, 10, 1)
CUTOFF_DATE = date(2026, 10, 16)


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={
                "check_same_thread": False,
            },
            poolclass=StaticPool,
        )

        # pysqlite needs its own transaction handling switched off for SAVEPOINT
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def _unique_email() -> str:
    return f"seller-{uuid.uuid4().hex[:12]}@example.com"


@pytest.fixture()
def payout_config():
    return PayoutConfig(
        currency="USD",
        fee_percent=Decimal("2"),
        max_split_payment_cents=20_000_00,
        recipients_per_job=240,
        job_stagger_seconds=60,
        min_amount_cents=10_00,
        pending_recheck_seconds=300,
    )


@pytest.fixture()
def make_payee(db_session):
    def _make(**overrides) -> Payee:
        values = {
            "name": "Test Seller",
            "email": _unique_email(),
            "payout_address": _unique_email(),
            "legal_entity_name": "Test Seller LLC",
        }
        values.update(overrides)
        payee = Payee(**values)
        db_session.add(payee)
        db_session.commit()
        db_session.refresh(payee)
        return payee

    return _make


@pytest.fixture()
def payee(make_payee):
    return make_payee()


@pytest.fixture()
def make_balance(db_session):
    def _make(
        payee: Payee,
        amount_cents: int,
        earnings_date: date = EARNINGS_DATE,
        currency: str = "USD",
        state: BalanceState = BalanceState.unpaid,
    ) -> Balance:
        balance = Balance(
            payee_id=payee.id,
            amount_cents=amount_cents,
            earnings_date=earnings_date,
            currency=currency,
            state=state,
        )
        db_session.add(balance)
        db_session.commit()
        db_session.refresh(balance)
        return balance

    return _make


@pytest.fixture()
def fake_client():
    return FakeMassPayClient()


@pytest.fixture()
def poll_recorder():
    return PollRecorder()


@pytest.fixture()
def make_payment(db_session):
    def _make(
        payee: Payee,
        amount_cents: int = 100_00,
        state: PaymentState = PaymentState.created,
        balances=None,
        currency: str = "USD",
        **overrides,
    ) -> Payment:
        values = {
            "payee_id": payee.id,
            "state": state,
            "currency": currency,
            "gross_amount_cents": amount_cents,
            "platform_fee_cents": 0,
            "amount_cents": amount_cents,
            "payment_address": payee.payout_address,
            "payout_period_end_date": CUTOFF_DATE,
        }
        values.update(overrides)
        payment = Payment(**values)
        if balances:
            payment.balances = list(balances)
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return _make
