from dataclasses import replace
from datetime import date
from unittest.mock import MagicMock, patch

from app.models.payout import BalanceState, FailureReason, PaymentState
from app.services.masspay import MassPayError, MassPayTransportError
from app.services.payouts.aggregator import PaymentAggregator
from app.services.payouts.confirmations import ConfirmationHandler
from app.services.payouts.dispatcher import PayoutDispatcher
from tests.conftest import CUTOFF_DATE
from tests.mocks import masspay_ack


def _dispatcher(client, config, poll_recorder, **kwargs):
    return PayoutDispatcher(
        client=client, config=config, schedule_poll=poll_recorder, **kwargs
    )


def _payments(db_session, config, payees, make_balance, amount_cents=50_00):
    for payee in payees:
        make_balance(payee, amount_cents)
    return PaymentAggregator(config).create_payments_up_to_date(db_session, CUTOFF_DATE)


def test_enqueue_payments_staggers_jobs(payout_config, fake_client, poll_recorder):
    config = replace(payout_config, recipients_per_job=2, job_stagger_seconds=60)
    dispatcher = _dispatcher(fake_client, config, poll_recorder)
    payee_ids = ["a", "b", "c", "d", "e"]

    with patch("app.tasks.payouts.payout_payees") as mock_task:
        jobs = dispatcher.enqueue_payments(payee_ids, date(2026, 10, 9))

    assert jobs == 3
    calls = mock_task.apply_async.call_args_list
    assert [c.kwargs["args"] for c in calls] == [
        ["2026-10-09", ["a", "b"]],
        ["2026-10-09", ["c", "d"]],
        ["2026-10-09", ["e"]],
    ]
    assert [c.kwargs["countdown"] for c in calls] == [0, 60, 120]


def test_enqueue_payments_without_payees(payout_config, fake_client, poll_recorder):
    with patch("app.tasks.payouts.payout_payees") as mock_task:
        jobs = _dispatcher(fake_client, payout_config, poll_recorder).enqueue_payments(
            [], CUTOFF_DATE
        )

    assert jobs == 0
    mock_task.apply_async.assert_not_called()


def test_bulk_submission_moves_payments_to_processing(
    db_session, payout_config, make_payee, make_balance, fake_client, poll_recorder
):
    payees = [make_payee(legal_entity_name="Acme LLC"), make_payee()]
    payments = _payments(db_session, payout_config, payees, make_balance)

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, payments
    )

    assert len(fake_client.calls) == 1
    items = fake_client.calls[0]
    assert [item.unique_id for item in items] == [str(p.id) for p in payments]
    assert [item.amount_cents for item in items] == [49_00, 49_00]
    acme_item = next(item for item in items if item.destination == payees[0].payout_address)
    assert acme_item.note == "Acme LLC, earnings through 2026-10-16"
    for payment in payments:
        db_session.refresh(payment)
        assert payment.state == PaymentState.processing
        assert payment.correlation_id == "CORR1"
        assert all(b.state == BalanceState.processing for b in payment.balances)
    assert poll_recorder.calls == []


def test_failed_ack_fails_payments_and_releases_balances(
    db_session, payout_config, payee, make_balance, fake_client, poll_recorder
):
    payments = _payments(db_session, payout_config, [payee], make_balance)
    fake_client.responses = [
        masspay_ack("Failure", "CORR9", ["10321 - Insufficient funds - Not enough money"])
    ]

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, payments
    )

    payment = payments[0]
    db_session.refresh(payment)
    assert payment.state == PaymentState.failed
    assert payment.failure_reason == FailureReason.processor_rejected
    assert payment.correlation_id == "CORR9"
    assert [b.state for b in payment.balances] == [BalanceState.unpaid]


def test_rejected_request_fails_payments(
    db_session, payout_config, payee, make_balance, fake_client, poll_recorder
):
    payments = _payments(db_session, payout_config, [payee], make_balance)
    fake_client.responses = [MassPayError("MassPay returned HTTP 400")]

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, payments
    )

    db_session.refresh(payments[0])
    assert payments[0].state == PaymentState.failed
    assert [b.state for b in payments[0].balances] == [BalanceState.unpaid]


def test_transport_error_keeps_balances_claimed_and_schedules_poll(
    db_session, payout_config, payee, make_balance, fake_client, poll_recorder
):
    payments = _payments(db_session, payout_config, [payee], make_balance)
    fake_client.responses = [MassPayTransportError("read timeout")]

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, payments
    )

    payment = payments[0]
    db_session.refresh(payment)
    assert payment.state == PaymentState.processing
    assert [b.state for b in payment.balances] == [BalanceState.processing]
    assert poll_recorder.calls == [(payment.id, payout_config.pending_recheck_seconds)]


def test_payments_are_grouped_by_currency(
    db_session, payout_config, payee, make_payee, make_payment, fake_client, poll_recorder
):
    usd = make_payment(payee, currency="USD")
    eur = make_payment(make_payee(), currency="EUR")

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, [usd, eur]
    )

    assert sorted([item.currency for item in call] for call in fake_client.calls) == [
        ["EUR"],
        ["USD"],
    ]


def test_non_created_payments_are_not_submitted(
    db_session, payout_config, payee, make_payment, fake_client, poll_recorder
):
    payment = make_payment(payee, state=PaymentState.processing)

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, [payment]
    )

    assert fake_client.calls == []


def test_should_split(payout_config, make_payee, make_payment, fake_client, poll_recorder):
    config = replace(payout_config, max_split_payment_cents=200_00)
    dispatcher = _dispatcher(fake_client, config, poll_recorder)
    splitting = make_payee(split_payouts=True, split_payment_by_cents=50_00)
    regular = make_payee()

    assert dispatcher.should_split(make_payment(regular, amount_cents=250_00)) is True
    assert dispatcher.should_split(make_payment(regular, amount_cents=200_00)) is False
    assert dispatcher.should_split(make_payment(splitting, amount_cents=80_00)) is True
    assert dispatcher.should_split(make_payment(splitting, amount_cents=50_00)) is False


def test_split_failure_does_not_block_other_payments(
    db_session, payout_config, payee, make_payee, make_payment, fake_client, poll_recorder
):
    config = replace(payout_config, max_split_payment_cents=200_00)
    coordinator = MagicMock()
    coordinator.perform_split_payment.side_effect = RuntimeError("boom")
    big = make_payment(make_payee(), amount_cents=500_00)
    small = make_payment(payee, amount_cents=20_00)

    _dispatcher(
        fake_client, config, poll_recorder, split_coordinator=coordinator
    ).process_payments(db_session, [big, small])

    coordinator.perform_split_payment.assert_called_once()
    assert [item.unique_id for item in fake_client.calls[0]] == [str(small.id)]
    db_session.refresh(small)
    assert small.state == PaymentState.processing
    # never submitted, so it must not stay in flight
    db_session.refresh(big)
    assert big.state == PaymentState.failed
    assert big.failure_reason == FailureReason.unclassified
    assert poll_recorder.calls == []


def test_confirmation_before_submission_is_recorded_wins(
    db_session, payout_config, payee, make_balance, fake_client, poll_recorder
):
    payments = _payments(db_session, payout_config, [payee], make_balance)
    handler = ConfirmationHandler(payout_config, schedule_poll=poll_recorder)

    def confirm(items):
        handler.handle_notification(
            db_session,
            {"unique_id_1": items[0].unique_id, "status_1": "Completed", "masspay_txn_id_1": "T1"},
        )

    fake_client.on_submit = confirm

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, payments
    )

    payment = payments[0]
    db_session.refresh(payment)
    assert payment.state == PaymentState.completed
    assert payment.txn_id == "T1"
    assert [b.state for b in payment.balances] == [BalanceState.paid]


def test_missing_masspay_config_fails_payments_and_releases_balances(
    db_session, payout_config, payee, make_balance, poll_recorder
):
    payments = _payments(db_session, payout_config, [payee], make_balance)
    dispatcher = PayoutDispatcher(config=payout_config, schedule_poll=poll_recorder)

    with patch(
        "app.services.payouts.dispatcher.MassPayClient.from_settings",
        side_effect=ValueError("Missing required MassPay settings"),
    ):
        dispatcher.process_payments(db_session, payments)

    payment = payments[0]
    db_session.refresh(payment)
    assert payment.state == PaymentState.failed
    assert payment.failure_reason == FailureReason.unclassified
    assert [b.state for b in payment.balances] == [BalanceState.unpaid]
    assert poll_recorder.calls == []


def test_unexpected_submission_error_is_an_unknown_outcome(
    db_session, payout_config, payee, make_balance, fake_client, poll_recorder
):
    payments = _payments(db_session, payout_config, [payee], make_balance)
    fake_client.responses = [RuntimeError("connection reset")]

    _dispatcher(fake_client, payout_config, poll_recorder).process_payments(
        db_session, payments
    )

    payment = payments[0]
    db_session.refresh(payment)
    assert payment.state == PaymentState.processing
    assert [b.state for b in payment.balances] == [BalanceState.processing]
    assert poll_recorder.calls == [(payment.id, payout_config.pending_recheck_seconds)]
